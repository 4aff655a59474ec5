"""
mesh_ops.decimate - Decimation Operations

Reduces triangle count toward a budget with Blender's iterative
edge-collapse decimator.
"""

import bpy
import math

from .bounds import finalize_geometry
from .errors import SimplifyFailure
from .mesh_io import set_indexed
from .topology import triangle_count
from .utils import (
    log, log_exception, step_timer,
    stage_ok, stage_noop, stage_fallback
)

MIN_VERTEX_RATIO = 0.05
MIN_TARGET_VERTICES = 3


# ============================================================================
# DECIMATOR
# ============================================================================

class Decimator:
    """
    Collapse decimation engine.

    Holds configuration only. Each call builds and removes its own scratch
    object, so one instance can be shared between assets.
    """

    def __init__(self, triangulate=True, use_symmetry=False, symmetry_axis='X'):
        self.triangulate = triangulate
        self.use_symmetry = use_symmetry
        self.symmetry_axis = symmetry_axis

    def collapse(self, mesh, ratio):
        """
        Evaluate a COLLAPSE decimate modifier over ``mesh``.

        The source mesh is not modified.

        Returns:
            New mesh datablock with the modifier applied
        """
        scene = bpy.context.scene
        tmp = bpy.data.objects.new(f"_Collapse_{mesh.name}", mesh)
        scene.collection.objects.link(tmp)

        try:
            mod = tmp.modifiers.new(name="Collapse_Decimate", type='DECIMATE')
            mod.decimate_type = 'COLLAPSE'
            mod.ratio = ratio
            mod.use_collapse_triangulate = self.triangulate
            mod.use_symmetry = self.use_symmetry
            mod.symmetry_axis = self.symmetry_axis

            depsgraph = bpy.context.evaluated_depsgraph_get()
            tmp_eval = tmp.evaluated_get(depsgraph)
            result = bpy.data.meshes.new_from_object(tmp_eval)
        finally:
            bpy.data.objects.remove(tmp, do_unlink=True)

        for key in mesh.keys():
            result[key] = mesh[key]
        return result


# ============================================================================
# SIMPLIFY
# ============================================================================

def decimation_targets(current_triangles, current_vertices, max_triangles):
    """
    Ratio and vertex target for a triangle budget.

    Returns:
        (ratio, target_vertices) with ratio clamped to [0.05, 1.0]
    """
    ratio = max(MIN_VERTEX_RATIO, min(1.0, max_triangles / current_triangles))
    target_vertices = max(MIN_TARGET_VERTICES, math.floor(current_vertices * ratio))
    return ratio, target_vertices


def simplify_mesh(mesh, max_triangles, decimator=None, report=None):
    """
    Collapse-decimate a normalized mesh toward a triangle budget.

    Args:
        mesh: Indexed bpy.types.Mesh
        max_triangles: Triangle budget
        decimator: Optional caller-owned Decimator
        report: Optional report list

    Returns:
        StageResult. NOOP (same mesh) when already within budget. The output
        never has more triangles than the input; a result that would is
        discarded as a FALLBACK.
    """
    current = triangle_count(mesh)

    if not max_triangles or max_triangles <= 0:
        return stage_noop(mesh, "no triangle budget", value={"triangles": current})

    if current <= max_triangles:
        log(f"[Simplify] {mesh.name}: {current:,} triangles within budget {max_triangles:,}", report)
        return stage_noop(mesh, "within budget", value={"triangles": current})

    vertices = len(mesh.vertices)
    ratio, target_vertices = decimation_targets(current, vertices, max_triangles)

    if decimator is None:
        decimator = Decimator()

    out = None

    try:
        with step_timer(f"Collapse decimate {mesh.name}", show_timing=False):
            out = decimator.collapse(mesh, target_vertices / vertices)
            set_indexed(out, True)
            finalize_geometry(out)

        after = triangle_count(out)
        if after > current:
            raise SimplifyFailure(f"decimation grew {current:,} -> {after:,} triangles")

    except Exception as e:
        log_exception(f"[Simplify] {mesh.name}: failed, keeping input -", e, report)
        if out is not None:
            bpy.data.meshes.remove(out)
        return stage_fallback(mesh, e if isinstance(e, SimplifyFailure) else SimplifyFailure(str(e)))

    log(f"[Simplify] {mesh.name}: {current:,} -> {after:,} triangles "
        f"(vertices {vertices:,} -> {len(out.vertices):,}, target {target_vertices:,}, ratio {ratio:.3f})",
        report)

    if abs(after - max_triangles) > max_triangles * 0.2:
        log(f"[Simplify] Note: Result differs from budget by {abs(after - max_triangles):,} triangles", report)

    return stage_ok(out, value={
        "triangles_before": current,
        "triangles_after": after,
        "ratio": ratio,
        "target_vertices": target_vertices,
    })
