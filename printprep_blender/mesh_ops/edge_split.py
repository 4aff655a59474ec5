"""
mesh_ops.edge_split - Sharp Edge Splitting

Duplicates vertices along edges whose adjoining faces meet at a sharp angle,
so shading and later decimation keep hard features crisp.
"""

import bpy
import bmesh
import math

from .bounds import finalize_geometry
from .errors import SplitPreconditionUnmet, SplitFailure
from .mesh_io import is_indexed, set_indexed
from .utils import (
    log, log_exception, step_timer,
    stage_ok, stage_noop, stage_fallback
)

DEFAULT_SPLIT_ANGLE = 30.0
COARSE_SPLIT_ANGLE = 60.0


def find_sharp_edges(bm, angle=DEFAULT_SPLIT_ANGLE):
    """Manifold edges whose two face normals differ by more than ``angle`` degrees."""
    angle_rad = math.radians(angle)
    sharp = []

    for edge in bm.edges:
        if len(edge.link_faces) != 2:
            continue

        f1, f2 = edge.link_faces[0], edge.link_faces[1]
        if f1.normal.angle(f2.normal, 0.0) > angle_rad:
            sharp.append(edge)

    return sharp


def split_sharp_edges(mesh, angle=DEFAULT_SPLIT_ANGLE, report=None):
    """
    Split the mesh along sharp edges.

    Args:
        mesh: Indexed bpy.types.Mesh
        angle: Dihedral threshold in degrees
        report: Optional report list

    Returns:
        StageResult. NOOP when the mesh is not indexed or has no triangle;
        FALLBACK (original mesh, normals and bounds refreshed) when the
        split fails. value holds the number of edges split.
    """
    if not is_indexed(mesh) or len(mesh.vertices) < 3 or len(mesh.loops) < 3:
        return stage_noop(mesh, SplitPreconditionUnmet(
            f"{mesh.name}: indexed={is_indexed(mesh)}, "
            f"{len(mesh.vertices)} vertices, {len(mesh.loops)} indices"))

    out = None

    try:
        with step_timer(f"Edge split {mesh.name} ({angle}°)", show_timing=False):
            bm = bmesh.new()
            try:
                bm.from_mesh(mesh)
                bm.normal_update()

                sharp = find_sharp_edges(bm, angle)
                if sharp:
                    bmesh.ops.split_edges(bm, edges=sharp)

                out = mesh.copy()
                bm.to_mesh(out)
            finally:
                bm.free()

            set_indexed(out, True)
            finalize_geometry(out)

    except Exception as e:
        log_exception(f"[Edge Split] {mesh.name}: failed, keeping original -", e, report)
        if out is not None:
            bpy.data.meshes.remove(out)
        try:
            finalize_geometry(mesh)
        except Exception as refresh_error:
            log(f"[Edge Split] {mesh.name}: normal refresh also failed: {refresh_error}", report)
        return stage_fallback(mesh, SplitFailure(str(e)))

    log(f"[Edge Split] {mesh.name}: Split {len(sharp)} edges (angle > {angle}°), "
        f"{len(mesh.vertices):,} -> {len(out.vertices):,} vertices", report)
    return stage_ok(out, value=len(sharp))
