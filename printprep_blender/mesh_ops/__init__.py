"""
mesh_ops - Print Prep Mesh Operations

Standalone mesh processing functions for Blender, used by the add-on panel
and callable directly from scripts or tests.

Stage functions take a mesh datablock and return a StageResult
(status, mesh, reason, value) instead of raising:
    func(mesh, ..., report=None) -> StageResult

Example:
    from printprep_blender.mesh_ops import mesh_io, topology, edge_split, decimate

    mesh = mesh_io.build_mesh("Part", positions)          # raw triangle soup
    welded = topology.normalize_mesh(mesh).mesh            # indexed
    split = edge_split.split_sharp_edges(welded, 30).mesh  # sharp edges kept
    small = decimate.simplify_mesh(split, 50000).mesh      # toward budget
"""

# Version
__version__ = "1.0.0"

# Import submodules for easy access
from . import utils
from . import errors
from . import mesh_io
from . import bounds
from . import topology
from . import grounding
from . import dimensions
from . import edge_split
from . import decimate
from . import pipeline

# Convenience imports for common functions
from .utils import StageResult, STATUS_OK, STATUS_NOOP, STATUS_FALLBACK
from .errors import (
    MeshOpsError,
    MalformedGeometry,
    WeldFailure,
    SplitPreconditionUnmet,
    SplitFailure,
    SimplifyFailure,
    AssetBusyError,
)
from .mesh_io import build_mesh, mesh_buffers, is_indexed
from .bounds import compute_bounding_box, compute_bounding_sphere, finalize_geometry
from .topology import normalize_mesh, triangle_count
from .grounding import ground_object, measure_object, world_bounding_box
from .dimensions import solve_uniform_scale, ScaleState
from .edge_split import split_sharp_edges
from .decimate import Decimator, simplify_mesh
from .pipeline import make_options, optimize_tree, AssetSession

__all__ = [
    # Submodules
    "utils",
    "errors",
    "mesh_io",
    "bounds",
    "topology",
    "grounding",
    "dimensions",
    "edge_split",
    "decimate",
    "pipeline",
    # Results
    "StageResult",
    "STATUS_OK",
    "STATUS_NOOP",
    "STATUS_FALLBACK",
    # Errors
    "MeshOpsError",
    "MalformedGeometry",
    "WeldFailure",
    "SplitPreconditionUnmet",
    "SplitFailure",
    "SimplifyFailure",
    "AssetBusyError",
    # Mesh I/O
    "build_mesh",
    "mesh_buffers",
    "is_indexed",
    # Bounds
    "compute_bounding_box",
    "compute_bounding_sphere",
    "finalize_geometry",
    # Topology
    "normalize_mesh",
    "triangle_count",
    # Grounding / dimensions
    "ground_object",
    "measure_object",
    "world_bounding_box",
    "solve_uniform_scale",
    "ScaleState",
    # Edge split / decimate
    "split_sharp_edges",
    "Decimator",
    "simplify_mesh",
    # Pipeline
    "make_options",
    "optimize_tree",
    "AssetSession",
]
