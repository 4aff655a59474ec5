"""
Shared fixtures: an empty factory scene per test and small mesh builders.
"""

import bpy
import bmesh
import pytest

from printprep_blender.mesh_ops import mesh_io


CUBE_VERTS = [
    (0, 0, 0), (1, 0, 0), (1, 1, 0), (0, 1, 0),
    (0, 0, 1), (1, 0, 1), (1, 1, 1), (0, 1, 1),
]

CUBE_TRIS = [
    (0, 2, 1), (0, 3, 2),  # bottom
    (4, 5, 6), (4, 6, 7),  # top
    (0, 1, 5), (0, 5, 4),  # front
    (2, 3, 7), (2, 7, 6),  # back
    (1, 2, 6), (1, 6, 5),  # right
    (3, 0, 4), (3, 4, 7),  # left
]


def cube_corners(size=1.0, offset=(0.0, 0.0, 0.0)):
    return [tuple(c * size + o for c, o in zip(v, offset)) for v in CUBE_VERTS]


def cube_soup(size=1.0, offset=(0.0, 0.0, 0.0)):
    """36 positions, three private corners per triangle."""
    corners = cube_corners(size, offset)
    return [corners[i] for tri in CUBE_TRIS for i in tri]


def cube_indices():
    return [i for tri in CUBE_TRIS for i in tri]


def icosphere(name="Ico", subdivisions=4, radius=1.0):
    """Indexed icosphere mesh: 20 * 4**(subdivisions - 1) triangles."""
    mesh = bpy.data.meshes.new(name)
    bm = bmesh.new()
    bmesh.ops.create_icosphere(bm, subdivisions=subdivisions, radius=radius)
    bm.to_mesh(mesh)
    bm.free()
    mesh_io.set_indexed(mesh, True)
    return mesh


def link_object(name, data=None, parent=None, location=(0.0, 0.0, 0.0)):
    """Create an object in the scene collection (EMPTY when data is None)."""
    obj = bpy.data.objects.new(name, data)
    bpy.context.scene.collection.objects.link(obj)
    obj.location = location
    if parent is not None:
        obj.parent = parent
    bpy.context.view_layer.update()
    return obj


@pytest.fixture(autouse=True)
def empty_scene():
    bpy.ops.wm.read_factory_settings(use_empty=True)
    yield


@pytest.fixture
def raw_cube():
    return mesh_io.build_mesh("RawCube", cube_soup())


@pytest.fixture
def indexed_cube():
    return mesh_io.build_mesh("Cube", cube_corners(), indices=cube_indices())
