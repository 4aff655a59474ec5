"""
Tests for the optimize pipeline and asset sessions.
"""

import bpy
import pytest

from printprep_blender.mesh_ops import mesh_io, pipeline, topology
from printprep_blender.mesh_ops.errors import AssetBusyError
from printprep_blender.mesh_ops.pipeline import AssetSession
from printprep_blender.mesh_ops.utils import STATUS_NOOP, STATUS_FALLBACK

from conftest import cube_soup, icosphere, link_object


def asset_with_spheres(subdivisions=5):
    root = link_object("Asset")
    first = link_object("SphereA", icosphere("SphereA", subdivisions), parent=root)
    second = link_object("SphereB", icosphere("SphereB", subdivisions), parent=root,
                         location=(3.0, 0.0, 0.0))
    marker = link_object("Marker", None, parent=root, location=(0.0, 0.0, 7.0))
    return root, first, second, marker


def box_asset(size=25.0, z=5.0):
    mesh = mesh_io.build_mesh("Box", cube_soup(size=size, offset=(0.0, 0.0, z)))
    return link_object("Box", mesh)


class TestOptions:
    """Option merging and coercion."""

    def test_defaults(self):
        options = pipeline.make_options()
        assert options == pipeline.DEFAULT_OPTIONS
        assert options["max_triangles"] == 100000
        assert options["preserve_edges"] is True
        assert options["split_angle"] == 30.0
        assert options["coarse_split_angle"] == 60.0

    def test_overrides(self):
        options = pipeline.make_options({"split": True}, max_triangles=5000)
        assert options["split"] is True
        assert options["max_triangles"] == 5000

    def test_unknown_option(self):
        with pytest.raises(ValueError, match="budget"):
            pipeline.make_options(budget=10)

    def test_coercion(self):
        options = pipeline.make_options(max_triangles="5000", iterations=5, weight=2, split_angle=45)
        assert options["max_triangles"] == 5000
        assert options["iterations"] == 1
        assert options["weight"] == 1.0
        assert isinstance(options["split_angle"], float)

    def test_no_budget(self):
        assert pipeline.make_options(max_triangles=None)["max_triangles"] is None

    def test_defaults_not_shared(self):
        pipeline.make_options(max_triangles=1)
        assert pipeline.DEFAULT_OPTIONS["max_triangles"] == 100000


class TestSubdivision:
    """The reserved subdivision slot."""

    def test_identity(self, indexed_cube):
        result = pipeline.apply_subdivision(indexed_cube, iterations=1, weight=0.5)
        assert result.status == STATUS_NOOP
        assert result.mesh == indexed_cube
        assert len(indexed_cube.vertices) == 8


class TestOptimizeTree:
    """Running the stage sequence over an asset."""

    def test_every_mesh_within_budget(self):
        root, first, second, marker = asset_with_spheres()

        results = pipeline.optimize_tree(root, max_triangles=2000, preserve_edges=True, flat_only=True)

        assert [r["node"] for r in results] == ["SphereA", "SphereB"]
        for r in results:
            assert r["triangles_before"] == 5120
            assert r["triangles_after"] < 5120
            assert r["triangles_after"] <= 2400
        for obj in (first, second):
            assert topology.triangle_count(obj.data) <= 2400
            assert mesh_io.has_normals(obj.data)

    def test_non_mesh_nodes_untouched(self):
        root, _, _, marker = asset_with_spheres(subdivisions=3)
        pipeline.optimize_tree(root, max_triangles=100)
        assert marker.type == 'EMPTY'
        assert marker.data is None
        assert tuple(marker.location) == pytest.approx((0.0, 0.0, 7.0))

    def test_within_budget_keeps_triangles(self):
        root, first, _, _ = asset_with_spheres(subdivisions=3)
        results = pipeline.optimize_tree(root)
        assert all(r["triangles_after"] == r["triangles_before"] for r in results)

    def test_raw_cube_welded_and_split(self, raw_cube):
        obj = link_object("Cube", raw_cube)

        results = pipeline.optimize_tree(obj, preserve_edges=True)

        assert len(obj.data.vertices) == 24
        assert topology.triangle_count(obj.data) == 12
        assert results[0]["triangles_before"] == 12
        assert [name for name, _ in results[0]["stages"]] == [
            "normalize", "edge_split", "normalize", "simplify",
        ]

    def test_originals_removed(self, raw_cube):
        obj = link_object("Cube", raw_cube)
        meshes_before = len(bpy.data.meshes)

        pipeline.optimize_tree(obj, preserve_edges=True)

        assert len(bpy.data.meshes) == meshes_before

    def test_keep_originals(self, raw_cube):
        obj = link_object("Cube", raw_cube)
        pipeline.optimize_tree(obj, preserve_edges=True, keep_originals=True)
        assert len(raw_cube.vertices) == 36
        assert obj.data != raw_cube

    def test_shared_mesh_processed_once(self):
        shared = icosphere("Shared", subdivisions=5)
        root = link_object("Asset")
        a = link_object("A", shared, parent=root)
        b = link_object("B", shared, parent=root)

        results = pipeline.optimize_tree(root, max_triangles=1000)

        assert len(results) == 1
        assert a.data == b.data
        assert topology.triangle_count(a.data) < 5120

    def test_coarse_split(self, indexed_cube):
        obj = link_object("Cube", indexed_cube)
        results = pipeline.optimize_tree(obj, preserve_edges=False, split=True)
        names = [name for name, _ in results[0]["stages"]]
        assert names[-1] == "coarse_split"
        assert len(obj.data.vertices) == 24

    def test_node_failure_keeps_original(self, monkeypatch):
        def broken(mesh, max_triangles, decimator=None, report=None):
            raise RuntimeError("decimator crashed")

        monkeypatch.setattr(pipeline, "simplify_mesh", broken)
        root, first, second, _ = asset_with_spheres(subdivisions=4)
        source = first.data
        report = []

        results = pipeline.optimize_tree(root, max_triangles=100, report=report)

        assert first.data == source
        assert topology.triangle_count(first.data) == 1280
        for r in results:
            assert r["stages"][0][0] == "node"
            assert r["stages"][0][1].status == STATUS_FALLBACK
        assert len(pipeline.degraded_stages(results)) == 2
        assert any("decimator crashed" in line for line in report)

    def test_degraded_stages_empty_on_success(self):
        root, _, _, _ = asset_with_spheres(subdivisions=3)
        assert pipeline.degraded_stages(pipeline.optimize_tree(root)) == []


class TestAssetSession:
    """Per-asset state: grounding, scale and exclusive optimize passes."""

    def test_attach_grounds_and_measures(self):
        obj = box_asset(size=25.0, z=5.0)
        seen = []
        session = AssetSession("Box", on_size=seen.append)

        sizes = session.attach(obj)

        assert session.state == AssetSession.GROUNDED
        assert sizes["scaled"] == pytest.approx((25.0, 25.0, 25.0))
        assert obj.location.z == pytest.approx(-5.0)
        assert seen == [sizes]

    def test_attach_with_model_scale(self):
        obj = box_asset(size=25.0, z=0.0)
        session = AssetSession("Box")
        sizes = session.attach(obj, model_scale=2.0)
        assert sizes["scaled"] == pytest.approx((50.0, 50.0, 50.0))
        assert sizes["base"] == pytest.approx((25.0, 25.0, 25.0))

    def test_malformed_asset_not_grounded(self):
        root = link_object("Asset")
        session = AssetSession("Asset")

        assert session.attach(root) is None
        assert session.state == AssetSession.LOADING

        link_object("Part", mesh_io.build_mesh("Part", cube_soup(offset=(0.0, 0.0, 2.0))), parent=root)
        result = session.ground()

        assert result.status != STATUS_FALLBACK
        assert session.state == AssetSession.GROUNDED
        assert session.sizes["scaled"] == pytest.approx((1.0, 1.0, 1.0))

    def test_optimize_keeps_ungrounded_state(self):
        session = AssetSession("Asset")
        session.attach(link_object("Asset"))
        session.optimize()
        assert session.state == AssetSession.LOADING

    def test_fit_dimension(self):
        obj = box_asset(size=25.0, z=0.0)
        session = AssetSession("Box")
        session.attach(obj)

        scale = session.fit_dimension("x", 100.0)

        assert scale == pytest.approx(4.0)
        assert session.sizes["scaled"][0] == pytest.approx(100.0)
        assert session.sizes["base"][0] == pytest.approx(25.0)
        assert grounded(obj)

    def test_fit_dimension_before_measure(self):
        session = AssetSession("Empty")
        assert session.fit_dimension("x", 100.0) == 1.0

    def test_optimize_bumps_version(self):
        obj = box_asset()
        ready = []
        session = AssetSession("Box", on_ready=ready.append)
        session.attach(obj)

        session.optimize(preserve_edges=True)
        session.optimize(preserve_edges=True)

        assert session.version == 2
        assert ready == [1, 2]
        assert session.state == AssetSession.GROUNDED
        assert not session.is_optimizing

    def test_optimize_nothing_loaded(self):
        session = AssetSession("Empty")
        assert session.optimize() == []
        assert session.version == 0

    def test_busy_session_rejects(self):
        session = AssetSession("Box")
        session.attach(box_asset())

        session._lock.acquire()
        try:
            with pytest.raises(AssetBusyError):
                session.optimize()
            with pytest.raises(AssetBusyError):
                session.set_scale(2.0)
        finally:
            session._lock.release()

        assert session.version == 0

    def test_lock_released_after_failure(self, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("pipeline crashed")

        session = AssetSession("Box")
        session.attach(box_asset())
        monkeypatch.setattr(pipeline, "optimize_tree", broken)

        with pytest.raises(RuntimeError):
            session.optimize()

        assert not session.is_optimizing
        assert session.state == AssetSession.GROUNDED
        assert session.version == 0

    def test_sessions_independent(self):
        first = AssetSession("A")
        second = AssetSession("B")
        first.attach(box_asset())
        other = link_object("Other", mesh_io.build_mesh("Other", cube_soup()))
        second.attach(other)

        first._lock.acquire()
        try:
            second.optimize()
        finally:
            first._lock.release()

        assert second.version == 1
        assert first.version == 0

    def test_unload(self):
        obj = box_asset()
        session = AssetSession("Box")
        session.attach(obj)

        session.unload()

        assert session.state == AssetSession.IDLE
        assert session.root is None
        assert len(bpy.data.objects) == 0
        assert len(bpy.data.meshes) == 0


def grounded(obj):
    from printprep_blender.mesh_ops.grounding import world_bounding_box

    return abs(world_bounding_box(obj)[0].z) < 1e-4
