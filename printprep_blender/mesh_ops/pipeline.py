"""
mesh_ops.pipeline - Optimize Pipeline

Sequences the mesh stages over every mesh object of an asset, and owns the
per-asset session state (grounding, scale, exclusive optimize passes).

PIPELINE (per mesh node):
    1. [preserve_edges] Weld, then split sharp edges (split_angle, 30°)
    2. [max_triangles]  Collapse decimate toward the triangle budget
    3. [not flat_only and iterations] Subdivision slot (identity)
    4. [split]          Split again at the coarse angle (60°), refresh normals
    5. Refresh normals, bounding sphere, bounding box; assign to the node

USAGE:
    from printprep_blender.mesh_ops import pipeline

    results = pipeline.optimize_tree(root, max_triangles=50000, flat_only=True)

    session = pipeline.AssetSession("Part", on_ready=print)
    session.attach(root)
    session.fit_dimension("x", 120.0)
    session.optimize(preserve_edges=True)
"""

import bpy
import threading

from .bounds import finalize_geometry, refresh_normals
from .decimate import Decimator, simplify_mesh
from .dimensions import ScaleState, apply_uniform_scale
from .edge_split import split_sharp_edges, DEFAULT_SPLIT_ANGLE, COARSE_SPLIT_ANGLE
from .errors import AssetBusyError
from .grounding import ground_object
from .topology import normalize_mesh, triangle_count
from .utils import (
    log, log_exception, create_report, discard_mesh,
    stage_noop, stage_fallback, STATUS_FALLBACK
)

# ============================================================================
# CONFIGURATION
# ============================================================================

DEFAULT_OPTIONS = {
    # Decimation budget (None or 0 = keep all triangles)
    "max_triangles": 100000,

    # Split sharp edges before decimation
    "preserve_edges": True,
    "split_angle": DEFAULT_SPLIT_ANGLE,

    # Second, coarser split after decimation
    "split": False,
    "coarse_split_angle": COARSE_SPLIT_ANGLE,

    # Reserved subdivision slot
    "flat_only": False,
    "iterations": 0,  # 0 or 1
    "weight": 0.0,    # 0..1
}


def make_options(options=None, **overrides):
    """
    Merge option overrides into DEFAULT_OPTIONS.

    Raises:
        ValueError: unknown option name
    """
    merged = DEFAULT_OPTIONS.copy()

    for source in (options or {}, overrides):
        unknown = set(source) - set(DEFAULT_OPTIONS)
        if unknown:
            raise ValueError(f"Unknown optimize options: {', '.join(sorted(unknown))}")
        merged.update(source)

    if merged["max_triangles"] is not None:
        merged["max_triangles"] = int(merged["max_triangles"])
    merged["preserve_edges"] = bool(merged["preserve_edges"])
    merged["split"] = bool(merged["split"])
    merged["flat_only"] = bool(merged["flat_only"])
    merged["iterations"] = 1 if merged["iterations"] else 0
    merged["weight"] = min(1.0, max(0.0, float(merged["weight"])))
    merged["split_angle"] = float(merged["split_angle"])
    merged["coarse_split_angle"] = float(merged["coarse_split_angle"])
    return merged


# ============================================================================
# STAGES
# ============================================================================

def apply_subdivision(mesh, iterations=0, weight=0.0, report=None):
    """Reserved subdivision slot. Identity until a scheme is chosen."""
    return stage_noop(mesh, f"subdivision reserved (iterations={iterations}, weight={weight:.2f})")


def optimize_mesh(mesh, options, decimator=None, report=None):
    """
    Run the stage sequence on one mesh datablock.

    The input mesh is only touched by the final normals/bounds refresh, and
    only when every stage left it in place. Intermediate datablocks are
    removed before returning, including when a stage raises.

    Returns:
        (final_mesh, stages) where stages is a list of (name, StageResult)
    """
    stages = []
    created = []
    current = mesh

    def run(name, result):
        nonlocal current
        stages.append((name, result))
        if result.mesh is not None and result.mesh != current:
            created.append(result.mesh)
            current = result.mesh

    try:
        if options["preserve_edges"]:
            run("normalize", normalize_mesh(current, report=report))
            run("edge_split", split_sharp_edges(current, options["split_angle"], report=report))

        max_triangles = options["max_triangles"]
        if max_triangles is not None and max_triangles > 0:
            run("normalize", normalize_mesh(current, report=report))
            run("simplify", simplify_mesh(current, max_triangles, decimator=decimator, report=report))

        if not options["flat_only"] and options["iterations"] > 0:
            run("subdivide", apply_subdivision(current, options["iterations"], options["weight"], report))

        if options["split"]:
            run("normalize", normalize_mesh(current, report=report))
            run("coarse_split", split_sharp_edges(current, options["coarse_split_angle"], report=report))
            refresh_normals(current)

        finalize_geometry(current)

    except Exception:
        for m in created:
            discard_mesh(m)
        raise

    for m in created:
        discard_mesh(m, keep=(current,))

    return current, stages


def optimize_tree(root, options=None, decimator=None, report=None, keep_originals=False, **overrides):
    """
    Optimize every mesh object at or below ``root``.

    Non-mesh objects and objects without data are left alone. A mesh shared
    by several objects is processed once. If a node fails unexpectedly it
    keeps its original mesh.

    Args:
        root: Asset root object
        options: Optional options dict (see DEFAULT_OPTIONS)
        decimator: Optional caller-owned Decimator
        report: Optional report list
        keep_originals: Keep replaced source meshes in bpy.data
        **overrides: Individual option overrides

    Returns:
        List of per-node dicts: node, triangles_before, triangles_after, stages
    """
    options = make_options(options, **overrides)
    if decimator is None:
        decimator = Decimator()

    log(f"\n[Pipeline] Optimizing {root.name}: {options}", report)

    results = []
    processed = {}
    replaced = []

    for obj in [root, *root.children_recursive]:
        if obj.type != 'MESH':
            continue

        source = obj.data
        if source is None:
            log(f"[Pipeline] {obj.name}: No geometry, skipped", report)
            continue

        key = source.as_pointer()
        if key in processed:
            obj.data = processed[key]
            continue

        before = triangle_count(source)

        try:
            final, stages = optimize_mesh(source, options, decimator=decimator, report=report)
        except Exception as e:
            log_exception(f"[Pipeline] {obj.name}: failed, keeping original mesh -", e, report)
            final, stages = source, [("node", stage_fallback(source, e))]

        processed[key] = final
        if final != source:
            obj.data = final
            replaced.append(source)

        after = triangle_count(final)
        log(f"[Pipeline] {obj.name}: {before:,} -> {after:,} triangles", report)

        results.append({
            "node": obj.name,
            "triangles_before": before,
            "triangles_after": after,
            "stages": stages,
        })

    if not keep_originals:
        for mesh in replaced:
            discard_mesh(mesh)

    return results


def degraded_stages(results):
    """(node, stage name, reason) for every stage that fell back."""
    return [
        (r["node"], name, result.reason)
        for r in results
        for name, result in r["stages"]
        if result.status == STATUS_FALLBACK
    ]


# ============================================================================
# ASSET SESSION
# ============================================================================

class AssetSession:
    """
    Host-side state of one loaded asset.

    State machine: IDLE -> LOADING -> GROUNDED -> (OPTIMIZING -> GROUNDED)*.
    An asset whose grounding falls back stays in LOADING until it grounds.
    Optimize passes are exclusive per session; a second request while one is
    running raises AssetBusyError. Sessions share nothing, so separate assets
    can be processed independently.
    """

    IDLE = "IDLE"
    LOADING = "LOADING"
    GROUNDED = "GROUNDED"
    OPTIMIZING = "OPTIMIZING"

    def __init__(self, name="Asset", decimator=None, on_size=None, on_ready=None):
        self.name = name
        self.root = None
        self.state = self.IDLE
        self.version = 0
        self.sizes = None
        self.scale_state = ScaleState()
        self.decimator = decimator if decimator is not None else Decimator()
        self.on_size = on_size
        self.on_ready = on_ready
        self.report = create_report()
        self._lock = threading.Lock()

    def __repr__(self):
        return f"AssetSession({self.name!r}, state={self.state}, version={self.version})"

    @property
    def is_optimizing(self):
        return self._lock.locked()

    def _require_idle_lock(self, action):
        if self.is_optimizing:
            raise AssetBusyError(f"{self.name}: cannot {action} while optimizing")

    # ------------------------------------------------------------------
    # Loading / grounding
    # ------------------------------------------------------------------

    def begin_load(self):
        """Enter LOADING, dropping any previously attached asset."""
        self._require_idle_lock("load")
        if self.root is not None:
            self.unload()
        self.state = self.LOADING

    def attach(self, root, model_scale=1.0):
        """
        Take a fully loaded asset root, apply its scale and ground it.

        Returns:
            Measured sizes {"scaled", "base"}, or None for malformed geometry
        """
        if self.state != self.LOADING:
            self.begin_load()

        self.root = root
        self.scale_state = ScaleState(model_scale=model_scale)
        apply_uniform_scale(root, self.scale_state)
        self.ground()
        return self.sizes

    def ground(self):
        """Re-ground and re-measure the attached asset."""
        result = ground_object(self.root, on_size=self._report_size, report=self.report)
        if result.status != STATUS_FALLBACK:
            self.state = self.GROUNDED
        return result

    def _report_size(self, sizes):
        self.sizes = sizes
        if self.on_size is not None:
            self.on_size(sizes)

    # ------------------------------------------------------------------
    # Scale
    # ------------------------------------------------------------------

    def set_scale(self, scale):
        self._require_idle_lock("rescale")
        self.scale_state.set_scale(scale)
        if self.root is not None:
            apply_uniform_scale(self.root, self.scale_state)
            self.ground()
        return self.scale_state.scale

    def fit_dimension(self, axis, target):
        """Scale uniformly so ``axis`` measures ``target`` mm."""
        self._require_idle_lock("rescale")
        if self.sizes is None:
            log(f"[Scale] {self.name}: No measured size, scale unchanged", self.report)
            return self.scale_state.scale

        scale = self.scale_state.fit_axis(axis, target, self.sizes["base"], report=self.report)
        return self.set_scale(scale)

    # ------------------------------------------------------------------
    # Optimize
    # ------------------------------------------------------------------

    def optimize(self, options=None, **overrides):
        """
        Run one exclusive optimize pass over the attached asset.

        Raises:
            AssetBusyError: another pass on this session is still running
        """
        if self.root is None:
            log(f"[Pipeline] {self.name}: Nothing loaded", self.report)
            return []

        if not self._lock.acquire(blocking=False):
            raise AssetBusyError(f"{self.name}: optimize already running")

        previous = self.state
        try:
            self.state = self.OPTIMIZING
            results = optimize_tree(self.root, options, decimator=self.decimator,
                                    report=self.report, **overrides)
            self.version += 1
        finally:
            self.state = previous
            self._lock.release()

        if self.on_ready is not None:
            self.on_ready(self.version)
        return results

    # ------------------------------------------------------------------
    # Unload
    # ------------------------------------------------------------------

    def unload(self):
        """Remove the asset's objects and their meshes."""
        self._require_idle_lock("unload")
        if self.root is not None:
            for obj in reversed([self.root, *self.root.children_recursive]):
                mesh = obj.data if obj.type == 'MESH' else None
                bpy.data.objects.remove(obj, do_unlink=True)
                discard_mesh(mesh)

        self.root = None
        self.sizes = None
        self.state = self.IDLE
