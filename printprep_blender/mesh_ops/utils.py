"""
mesh_ops.utils - Common Utilities

Shared helper functions for mesh operations: report logging, step timing,
stage results and datablock housekeeping.
"""

import bpy
import time
import traceback
from collections import namedtuple

# ============================================================================
# LOGGING
# ============================================================================

def create_report():
    """Create a new report list for logging."""
    return []


def log(msg, report=None):
    """Log message to console and optionally to report list."""
    print(msg)
    if report is not None:
        report.append(msg)


def log_exception(prefix, exc, report=None):
    """Log an exception and its traceback under a bracketed prefix."""
    log(f"{prefix} {type(exc).__name__}: {exc}", report)
    log(traceback.format_exc(), report)


def log_to_text(content: str, text_name: str = "PrintPrep_Log.txt"):
    """Write log content to a Blender text block."""
    txt = bpy.data.texts.get(text_name)
    if not txt:
        txt = bpy.data.texts.new(text_name)
    txt.clear()
    txt.write(content)
    return txt


# ============================================================================
# TIMING
# ============================================================================

class StepTimer:
    """Context manager for timing individual steps."""

    def __init__(self, name, show_timing=True):
        self.name = name
        self.start = None
        self.elapsed = 0.0
        self.show_timing = show_timing

    def __enter__(self):
        self.start = time.time()
        if self.show_timing:
            print(f"[Step] {self.name}...")
        return self

    def __exit__(self, *args):
        self.elapsed = time.time() - self.start
        if self.show_timing:
            print(f"[Step] {self.name}: {self.elapsed:.2f}s")


def step_timer(name, show_timing=True):
    """Create a step timer context manager."""
    return StepTimer(name, show_timing)


# ============================================================================
# STAGE RESULTS
# ============================================================================

STATUS_OK = "OK"
STATUS_NOOP = "NOOP"
STATUS_FALLBACK = "FALLBACK"

StageResult = namedtuple("StageResult", ["status", "mesh", "reason", "value"])
StageResult.__doc__ = """Outcome of one pipeline stage.

status is one of OK, NOOP (nothing to do, by contract) or FALLBACK
(the stage failed internally and degraded to its best available output).
"""


def stage_ok(mesh, value=None):
    return StageResult(STATUS_OK, mesh, None, value)


def stage_noop(mesh, reason=None, value=None):
    return StageResult(STATUS_NOOP, mesh, reason, value)


def stage_fallback(mesh, reason, value=None):
    return StageResult(STATUS_FALLBACK, mesh, reason, value)


# ============================================================================
# SCENE / DATABLOCK HELPERS
# ============================================================================

def depsgraph_update():
    """Force depsgraph update so matrix_world reflects pending edits."""
    bpy.context.view_layer.update()


def discard_mesh(mesh, keep=()):
    """Remove a mesh datablock that no object uses any more.

    Meshes listed in ``keep`` are never removed.
    """
    if mesh is None or any(mesh == k for k in keep):
        return False
    if mesh.users > 0:
        return False
    bpy.data.meshes.remove(mesh)
    return True


def iter_mesh_nodes(root):
    """Yield root and every descendant object that carries mesh data."""
    for obj in [root, *root.children_recursive]:
        if obj.type == 'MESH' and obj.data is not None:
            yield obj


# ============================================================================
# MESH INFO
# ============================================================================

def get_vertex_count(obj):
    """Get vertex count from mesh object."""
    if obj is None or obj.type != 'MESH':
        return 0
    return len(obj.data.vertices)


def get_mesh_stats(mesh):
    """Get vertex/triangle statistics for a mesh datablock."""
    if mesh is None:
        return None

    mesh.calc_loop_triangles()
    return {
        "name": mesh.name,
        "vertices": len(mesh.vertices),
        "edges": len(mesh.edges),
        "faces": len(mesh.polygons),
        "triangles": len(mesh.loop_triangles),
        "materials": len(mesh.materials),
    }


def print_mesh_stats(obj, report=None):
    """Print mesh statistics to console and report."""
    if obj is None or obj.type != 'MESH':
        log(f"[Stats] {obj.name if obj else 'None'}: Not a mesh", report)
        return None

    stats = get_mesh_stats(obj.data)
    log(f"[Stats] {obj.name}:", report)
    log(f"         Vertices: {stats['vertices']:,}", report)
    log(f"         Edges: {stats['edges']:,}", report)
    log(f"         Triangles: {stats['triangles']:,}", report)
    log(f"         Materials: {stats['materials']}", report)
    return stats
