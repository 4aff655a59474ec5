"""
mesh_ops.errors - Error Types

Stages catch these internally and report them as the reason of a
FALLBACK or NOOP stage result. Only mesh construction and the asset
session raise them to callers.
"""


class MeshOpsError(Exception):
    """Base class for mesh operation errors."""


class MalformedGeometry(MeshOpsError):
    """Fewer than 3 usable vertices, invalid indices or a non-finite box."""


class WeldFailure(MeshOpsError):
    """Merging duplicate vertices failed."""


class SplitPreconditionUnmet(MeshOpsError):
    """Mesh is not indexed or has too few vertices/indices to split."""


class SplitFailure(MeshOpsError):
    """Sharp-edge split failed."""


class SimplifyFailure(MeshOpsError):
    """Collapse decimation failed or produced more triangles than it got."""


class AssetBusyError(MeshOpsError):
    """An optimize pass is already running on this asset."""
