"""
mesh_io - Raw Buffer Boundary

Converts decoded asset buffers (positions, optional normals, optional flat
triangle index list) into Blender mesh datablocks and back.

Blender meshes are always indexed internally. A "raw" (non-indexed) asset is
stored as one private vertex per triangle corner and flagged with the
``indexed`` custom property so later stages know it still needs welding.
"""

import bpy
import math
from array import array

from .errors import MalformedGeometry
from .utils import log

INDEXED_PROP = "indexed"
NORMAL_ATTR = "vertex_normal"


# ============================================================================
# BUILD
# ============================================================================

def build_mesh(name, positions, normals=None, indices=None, report=None):
    """
    Create a mesh datablock from raw buffers.

    Args:
        name: Datablock name
        positions: Sequence of (x, y, z) vertex positions
        normals: Optional sequence of (x, y, z) vertex normals, parallel to positions
        indices: Optional flat sequence of vertex indices, 3 per triangle
        report: Optional report list

    Returns:
        New bpy.types.Mesh

    Raises:
        MalformedGeometry: bad position tuples, normals of the wrong length,
            or indices that do not reference a vertex
    """
    verts = []
    for p in positions:
        if len(p) != 3:
            raise MalformedGeometry(f"position {p!r} is not a 3D point")
        verts.append((float(p[0]), float(p[1]), float(p[2])))

    count = len(verts)

    if indices is not None:
        flat = [int(i) for i in indices]
        if len(flat) % 3:
            raise MalformedGeometry(f"index count {len(flat)} is not a multiple of 3")
        bad = [i for i in flat if i < 0 or i >= count]
        if bad:
            raise MalformedGeometry(f"{len(bad)} indices out of range for {count} vertices")
        faces = [tuple(flat[i:i + 3]) for i in range(0, len(flat), 3)]
        indexed = True
    else:
        faces = [(i, i + 1, i + 2) for i in range(0, count - count % 3, 3)]
        indexed = False

    if normals is not None and len(normals) != count:
        raise MalformedGeometry(f"{len(normals)} normals for {count} vertices")

    mesh = bpy.data.meshes.new(name)
    mesh.from_pydata(verts, [], faces)
    mesh[INDEXED_PROP] = indexed

    degenerate = sum(1 for f in faces if len(set(f)) < 3)
    if degenerate:
        mesh.validate(clean_customdata=False)
        log(f"[Import] {name}: Dropped {degenerate} degenerate triangles", report)

    if normals is not None:
        set_vertex_normals(mesh, normals)

    mesh.update()

    log(f"[Import] {name}: {count:,} vertices, {len(mesh.polygons):,} triangles "
        f"({'indexed' if indexed else 'raw'})", report)
    return mesh


# ============================================================================
# READ BACK
# ============================================================================

def mesh_buffers(mesh):
    """
    Read a mesh back into raw buffers.

    Returns:
        (positions, normals, indices): positions as a list of (x, y, z),
        normals as a parallel list or None, indices as a flat list for
        indexed meshes and None for raw ones
    """
    positions = [tuple(v.co) for v in mesh.vertices]
    normals = get_vertex_normals(mesh)

    if not is_indexed(mesh):
        return positions, normals, None

    mesh.calc_loop_triangles()
    indices = []
    for tri in mesh.loop_triangles:
        indices.extend(tri.vertices)
    return positions, normals, indices


def loop_vertex_indices(mesh):
    """Flat array of the vertex index of every face corner."""
    buf = array('i', [0]) * len(mesh.loops)
    mesh.loops.foreach_get("vertex_index", buf)
    return buf


def finite_vertex_count(mesh):
    """Number of vertices whose coordinates are all finite."""
    return sum(1 for v in mesh.vertices if all(math.isfinite(c) for c in v.co))


# ============================================================================
# INDEXING
# ============================================================================

def is_indexed(mesh):
    """
    Whether the mesh shares vertices between triangles.

    Uses the ``indexed`` flag when present. Otherwise a mesh is treated as raw
    only when it is a pure triangle soup: every corner has a private vertex.
    """
    flag = mesh.get(INDEXED_PROP)
    if flag is not None:
        return bool(flag)
    return not _is_triangle_soup(mesh)


def set_indexed(mesh, indexed=True):
    mesh[INDEXED_PROP] = bool(indexed)


def _is_triangle_soup(mesh):
    count = len(mesh.vertices)
    if count == 0 or len(mesh.loops) != count:
        return False
    if any(p.loop_total != 3 for p in mesh.polygons):
        return False
    return len(set(loop_vertex_indices(mesh))) == count


# ============================================================================
# NORMALS
# ============================================================================

def has_normals(mesh):
    return mesh.attributes.get(NORMAL_ATTR) is not None


def get_vertex_normals(mesh):
    """Stored per-vertex normals as a list of (x, y, z), or None."""
    attr = mesh.attributes.get(NORMAL_ATTR)
    if attr is None:
        return None
    buf = array('f', [0.0]) * (len(attr.data) * 3)
    attr.data.foreach_get("vector", buf)
    return [tuple(buf[i:i + 3]) for i in range(0, len(buf), 3)]


def set_vertex_normals(mesh, normals):
    """Store per-vertex normals in the point attribute the host renders from."""
    attr = mesh.attributes.get(NORMAL_ATTR)
    if attr is None or attr.domain != 'POINT' or attr.data_type != 'FLOAT_VECTOR':
        if attr is not None:
            mesh.attributes.remove(attr)
        attr = mesh.attributes.new(NORMAL_ATTR, 'FLOAT_VECTOR', 'POINT')

    flat = array('f', [c for n in normals for c in n])
    attr.data.foreach_set("vector", flat)
