"""
mesh_ops.bounds - Bounds and Normal Refresh

Bounding box / bounding sphere computation and the post-stage refresh that
every geometry-producing stage runs on its output.
"""

import math
from array import array
from mathutils import Vector

from .mesh_io import set_vertex_normals

BOX_MIN_PROP = "bound_box_min"
BOX_MAX_PROP = "bound_box_max"
SPHERE_CENTER_PROP = "bound_sphere_center"
SPHERE_RADIUS_PROP = "bound_sphere_radius"


# ============================================================================
# BOUNDING BOX / SPHERE
# ============================================================================

def bounding_box_from_points(points):
    """
    Axis-aligned box around a set of points.

    Returns:
        (min, max) Vectors, or None for fewer than 3 points or any
        non-finite coordinate
    """
    min_co = Vector((float('inf'), float('inf'), float('inf')))
    max_co = Vector((float('-inf'), float('-inf'), float('-inf')))
    count = 0

    for co in points:
        for i in range(3):
            min_co[i] = min(min_co[i], co[i])
            max_co[i] = max(max_co[i], co[i])
        count += 1

    if count < 3:
        return None
    if not all(math.isfinite(c) for c in (*min_co, *max_co)):
        return None
    return min_co, max_co


def compute_bounding_box(mesh):
    """Local-space bounding box of a mesh datablock, or None if degenerate."""
    return bounding_box_from_points(v.co for v in mesh.vertices)


def compute_bounding_sphere(mesh, box=None):
    """
    Sphere centered on the bounding box that encloses every vertex.

    Returns:
        (center, radius), or None if the box is degenerate
    """
    if box is None:
        box = compute_bounding_box(mesh)
    if box is None:
        return None

    center = (box[0] + box[1]) / 2.0
    radius_sq = 0.0
    for v in mesh.vertices:
        radius_sq = max(radius_sq, (v.co - center).length_squared)
    return center, math.sqrt(radius_sq)


def box_size(box):
    """(x, y, z) extents of a (min, max) box."""
    size = box[1] - box[0]
    return (size.x, size.y, size.z)


# ============================================================================
# REFRESH
# ============================================================================

def refresh_normals(mesh):
    """Recompute vertex normals from the current geometry and store them."""
    mesh.update()
    count = len(mesh.vertices)
    buf = array('f', [0.0]) * (count * 3)
    if count:
        mesh.vertex_normals.foreach_get("vector", buf)
    set_vertex_normals(mesh, [tuple(buf[i:i + 3]) for i in range(0, len(buf), 3)])


def refresh_bounds(mesh):
    """Recompute and cache the bounding box and bounding sphere on the mesh."""
    box = compute_bounding_box(mesh)
    sphere = compute_bounding_sphere(mesh, box) if box else None

    for key in (BOX_MIN_PROP, BOX_MAX_PROP, SPHERE_CENTER_PROP, SPHERE_RADIUS_PROP):
        if key in mesh:
            del mesh[key]

    if box is None:
        return None, None

    mesh[BOX_MIN_PROP] = list(box[0])
    mesh[BOX_MAX_PROP] = list(box[1])
    mesh[SPHERE_CENTER_PROP] = list(sphere[0])
    mesh[SPHERE_RADIUS_PROP] = sphere[1]
    return box, sphere


def finalize_geometry(mesh):
    """Normals, bounding sphere and bounding box, in that order."""
    refresh_normals(mesh)
    return refresh_bounds(mesh)


def cached_bounding_box(mesh):
    """Bounding box cached by the last refresh, or None."""
    if BOX_MIN_PROP not in mesh or BOX_MAX_PROP not in mesh:
        return None
    return Vector(mesh[BOX_MIN_PROP]), Vector(mesh[BOX_MAX_PROP])
