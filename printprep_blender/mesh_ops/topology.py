"""
mesh_ops.topology - Topology Normalization

Vertex welding (raw triangle soup -> indexed mesh) and triangle counting.
"""

import bpy
import bmesh

from .errors import MalformedGeometry, WeldFailure
from .mesh_io import is_indexed, set_indexed, finite_vertex_count
from .utils import (
    log, log_exception, step_timer,
    stage_ok, stage_noop, stage_fallback
)

WELD_DISTANCE = 1e-4


def _welded_bmesh(mesh, dist):
    """BMesh copy of the mesh with coincident vertices merged. Caller frees it."""
    bm = bmesh.new()
    try:
        bm.from_mesh(mesh)
        bmesh.ops.remove_doubles(bm, verts=bm.verts, dist=dist)
    except Exception:
        bm.free()
        raise
    return bm


# ============================================================================
# NORMALIZE
# ============================================================================

def normalize_mesh(mesh, dist=WELD_DISTANCE, report=None):
    """
    Weld duplicate vertices so the mesh shares vertices between triangles.

    Already-indexed meshes and meshes with fewer than 3 vertices are returned
    as they are. A failed weld returns the original mesh as a FALLBACK; this
    function never raises.

    Args:
        mesh: bpy.types.Mesh
        dist: Merge distance in world units
        report: Optional report list

    Returns:
        StageResult whose mesh is either the input or a new welded datablock
    """
    if is_indexed(mesh):
        return stage_noop(mesh, "already indexed")

    if len(mesh.vertices) < 3:
        return stage_noop(mesh, MalformedGeometry(f"{len(mesh.vertices)} vertices"))

    welded = None
    initial_verts = len(mesh.vertices)

    try:
        with step_timer(f"Weld {mesh.name}", show_timing=False):
            bm = _welded_bmesh(mesh, dist)
            try:
                welded = mesh.copy()
                bm.to_mesh(welded)
            finally:
                bm.free()

            set_indexed(welded, True)
            welded.update()
    except Exception as e:
        log_exception(f"[Weld] {mesh.name}: failed, keeping unwelded mesh -", e, report)
        if welded is not None:
            bpy.data.meshes.remove(welded)
        return stage_fallback(mesh, WeldFailure(str(e)))

    log(f"[Weld] {mesh.name}: {initial_verts:,} -> {len(welded.vertices):,} vertices", report)
    return stage_ok(welded)


# ============================================================================
# COUNT
# ============================================================================

def triangle_count(mesh):
    """
    Number of triangles in the mesh.

    Raw meshes hold three corners per triangle, zero-area ones included, so
    they count as vertices // 3. Meshes with fewer than 3 finite vertices
    count as 0.
    """
    if mesh is None or finite_vertex_count(mesh) < 3:
        return 0

    if is_indexed(mesh):
        mesh.calc_loop_triangles()
        return len(mesh.loop_triangles)

    return len(mesh.vertices) // 3
