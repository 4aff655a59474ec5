"""
mesh_ops.grounding - Grounding and Measurement

Rests an asset on the Z=0 ground plane and reports its physical size,
both as currently scaled and in its own unscaled frame.
"""

from .bounds import bounding_box_from_points, box_size
from .errors import MalformedGeometry
from .utils import (
    log, depsgraph_update, iter_mesh_nodes,
    stage_ok, stage_fallback
)

UP_AXIS = 2  # Blender is Z-up


# ============================================================================
# BOUNDS
# ============================================================================

def _points(obj, space=None):
    """Vertex positions of obj and its mesh descendants, in world or given space."""
    for node in iter_mesh_nodes(obj):
        matrix = node.matrix_world if space is None else space @ node.matrix_world
        for v in node.data.vertices:
            yield matrix @ v.co


def world_bounding_box(obj):
    """World-space box over obj and every mesh below it, or None if degenerate."""
    return bounding_box_from_points(_points(obj))


def local_bounding_box(obj):
    """Box over the same geometry expressed in obj's own (unscaled) frame."""
    return bounding_box_from_points(_points(obj, obj.matrix_world.inverted_safe()))


def measure_object(obj):
    """
    Measure without moving anything.

    Returns:
        {"scaled": (x, y, z), "base": (x, y, z)} or None if degenerate
    """
    depsgraph_update()
    box = world_bounding_box(obj)
    base = local_bounding_box(obj)
    if box is None or base is None:
        return None
    return {"scaled": box_size(box), "base": box_size(base)}


# ============================================================================
# GROUND
# ============================================================================

def ground_object(obj, on_size=None, report=None):
    """
    Translate obj so the lowest point of its geometry sits at Z=0.

    Args:
        obj: Asset root or single mesh object, linked into the view layer
        on_size: Optional callback receiving {"scaled": ..., "base": ...}
        report: Optional report list

    Returns:
        StageResult; value holds the sizes plus the applied "offset".
        A degenerate or non-finite box is a FALLBACK and leaves obj untouched.
    """
    depsgraph_update()
    box = world_bounding_box(obj)

    if box is None:
        log(f"[Ground] {obj.name}: No finite geometry, skipping", report)
        return stage_fallback(None, MalformedGeometry(f"{obj.name} has no finite bounding box"))

    offset = box[0][UP_AXIS]

    matrix = obj.matrix_world.copy()
    translation = matrix.translation.copy()
    translation[UP_AXIS] -= offset
    matrix.translation = translation
    obj.matrix_world = matrix
    depsgraph_update()

    base = local_bounding_box(obj)
    sizes = {
        "scaled": box_size(box),
        "base": box_size(base) if base is not None else box_size(box),
    }

    log(f"[Ground] {obj.name}: Offset {offset:.4f}, size "
        f"{sizes['scaled'][0]:.2f} x {sizes['scaled'][1]:.2f} x {sizes['scaled'][2]:.2f}", report)

    if on_size is not None:
        on_size(sizes)

    return stage_ok(None, value=dict(sizes, offset=offset))
