"""
Tests for grounding and measurement.
"""

import bpy
import pytest

from printprep_blender.mesh_ops import grounding, mesh_io
from printprep_blender.mesh_ops.errors import MalformedGeometry
from printprep_blender.mesh_ops.utils import STATUS_OK, STATUS_FALLBACK

from conftest import cube_soup, link_object


def raised_cube(name="Raised", size=1.0, z=5.0):
    return mesh_io.build_mesh(name, cube_soup(size=size, offset=(-0.5 * size, 2.0, z)))


class TestGround:
    """Resting assets on the Z=0 plane."""

    def test_mesh_above_ground(self):
        obj = link_object("Part", raised_cube(z=5.0))
        before = grounding.world_bounding_box(obj)

        result = grounding.ground_object(obj)
        after = grounding.world_bounding_box(obj)

        assert result.status == STATUS_OK
        assert result.value["offset"] == pytest.approx(5.0)
        assert after[0].z == pytest.approx(0.0, abs=1e-6)
        assert after[1].z == pytest.approx(1.0, abs=1e-6)
        # horizontal extents unchanged
        assert after[0].x == pytest.approx(before[0].x)
        assert after[1].x == pytest.approx(before[1].x)
        assert after[0].y == pytest.approx(before[0].y)
        assert after[1].y == pytest.approx(before[1].y)

    def test_mesh_below_ground(self):
        obj = link_object("Sunk", raised_cube(z=-2.5))
        grounding.ground_object(obj)
        box = grounding.world_bounding_box(obj)
        assert box[0].z == pytest.approx(0.0, abs=1e-6)
        assert obj.location.z == pytest.approx(2.5)

    def test_parented_and_scaled(self):
        root = link_object("Root", None, location=(0.0, 0.0, 3.0))
        root.scale = (2.0, 2.0, 2.0)
        link_object("Child", raised_cube(z=1.0), parent=root)

        result = grounding.ground_object(root)
        box = grounding.world_bounding_box(root)

        assert result.status == STATUS_OK
        assert box[0].z == pytest.approx(0.0, abs=1e-6)
        assert result.value["scaled"] == pytest.approx((2.0, 2.0, 2.0))
        assert result.value["base"] == pytest.approx((1.0, 1.0, 1.0))

    def test_size_callback(self):
        obj = link_object("Part", raised_cube(size=25.0, z=0.0))
        sizes = []

        grounding.ground_object(obj, on_size=sizes.append)

        assert len(sizes) == 1
        assert set(sizes[0]) == {"scaled", "base"}
        assert sizes[0]["scaled"] == pytest.approx((25.0, 25.0, 25.0))

    def test_ignores_non_mesh_children(self):
        root = link_object("Root")
        link_object("Part", raised_cube(z=4.0), parent=root)
        link_object("Marker", None, parent=root, location=(0.0, 0.0, -10.0))

        result = grounding.ground_object(root)
        assert result.value["offset"] == pytest.approx(4.0)


class TestMalformed:
    """Degenerate geometry leaves the transform alone."""

    def test_two_vertices(self):
        mesh = mesh_io.build_mesh("Pair", [(0, 0, 5), (1, 0, 5)])
        obj = link_object("Pair", mesh, location=(0.0, 0.0, 1.0))

        result = grounding.ground_object(obj)

        assert result.status == STATUS_FALLBACK
        assert isinstance(result.reason, MalformedGeometry)
        assert obj.location.z == pytest.approx(1.0)

    def test_non_finite(self):
        inf = float("inf")
        mesh = mesh_io.build_mesh("Broken", [(0, 0, 0), (1, 0, inf), (0, 1, 0)])
        obj = link_object("Broken", mesh, location=(0.0, 0.0, 1.0))

        result = grounding.ground_object(obj)

        assert result.status == STATUS_FALLBACK
        assert obj.location.z == pytest.approx(1.0)

    def test_empty_only(self):
        obj = link_object("Empty")
        result = grounding.ground_object(obj)
        assert result.status == STATUS_FALLBACK


class TestMeasure:
    """Measuring without moving."""

    def test_measure_does_not_move(self):
        obj = link_object("Part", raised_cube(size=2.0, z=3.0))
        sizes = grounding.measure_object(obj)

        assert sizes["scaled"] == pytest.approx((2.0, 2.0, 2.0))
        assert obj.location.z == pytest.approx(0.0)

    def test_measure_degenerate(self):
        obj = link_object("Empty")
        assert grounding.measure_object(obj) is None

    def test_world_box_follows_scale(self):
        obj = link_object("Part", raised_cube(size=1.0, z=0.0))
        obj.scale = (3.0, 3.0, 3.0)
        bpy.context.view_layer.update()

        sizes = grounding.measure_object(obj)
        assert sizes["scaled"] == pytest.approx((3.0, 3.0, 3.0))
        assert sizes["base"] == pytest.approx((1.0, 1.0, 1.0))
