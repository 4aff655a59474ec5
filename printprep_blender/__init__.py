"""
Print Prep Blender Tools

Prepares imported 3D models for printing: welds raw triangle soups, rests the
model on the build plate, scales it to a physical size in millimeters and
reduces its triangle budget while keeping sharp features.

Features:
- Grounding (lowest point at Z=0) and size readout in mm
- Uniform scale from a target size on any axis
- Mesh optimize: sharp edge split, collapse decimation, coarse split
- Vertex welding and mesh statistics

Compatible with Blender 4.2+ extension system.
"""

bl_info = {
    "name": "Print Prep Tools",
    "author": "Print Prep contributors",
    "version": (1, 0, 0),
    "blender": (4, 2, 0),
    "location": "View3D > Sidebar > Print Prep",
    "description": "Ground, dimension and optimize meshes for printing",
    "category": "Mesh",
}

import bpy
from bpy.props import (
    IntProperty, FloatProperty, BoolProperty, EnumProperty,
    FloatVectorProperty, PointerProperty
)
from bpy.types import PropertyGroup, Panel, Operator

# Import mesh operations
from . import mesh_ops
from .mesh_ops import utils, topology, pipeline, dimensions
from .mesh_ops.errors import AssetBusyError

LOG_TEXT_NAME = "PrintPrep_Log.txt"


# ============================================================================
# PROPERTY GROUPS - Configuration exposed in UI
# ============================================================================

class PP_OptimizeSettings(PropertyGroup):
    """Mesh optimize settings"""
    use_max_triangles: BoolProperty(
        name="Limit Triangles",
        description="Decimate meshes above the triangle budget",
        default=True
    )
    max_triangles: IntProperty(
        name="Max Triangles",
        description="Triangle budget per mesh",
        default=100000,
        min=100,
        soft_min=20000,
        soft_max=300000,
        step=1000
    )
    preserve_edges: BoolProperty(
        name="Preserve Edges",
        description="Split sharp edges before decimation (recommended)",
        default=True
    )
    split_angle: FloatProperty(
        name="Split Angle",
        description="Face angle above which an edge counts as sharp (degrees)",
        default=30.0,
        min=0.0,
        max=180.0
    )
    split: BoolProperty(
        name="Coarse Split",
        description="Split again after decimation at the coarse angle",
        default=False
    )
    coarse_split_angle: FloatProperty(
        name="Coarse Angle",
        description="Face angle for the post-decimation split (degrees)",
        default=60.0,
        min=0.0,
        max=180.0
    )
    flat_only: BoolProperty(
        name="Flat Only",
        description="Skip the subdivision slot entirely",
        default=False
    )
    iterations: IntProperty(
        name="Iterations",
        description="Reserved subdivision iterations (currently no effect)",
        default=0,
        min=0,
        max=1
    )
    weight: FloatProperty(
        name="Weight",
        description="Reserved subdivision weight (currently no effect)",
        default=0.0,
        min=0.0,
        max=1.0
    )


class PP_ScaleSettings(PropertyGroup):
    """Grounding, dimension and busy state"""
    model_scale: FloatProperty(
        name="Model Scale",
        description="Scale the asset arrived with, applied under the uniform scale",
        default=1.0,
        min=0.0001
    )
    uniform_scale: FloatProperty(
        name="Scale",
        description="Uniform scale factor",
        default=1.0,
        min=dimensions.SCALE_LIMITS["MIN_SCALE"],
        max=dimensions.SCALE_LIMITS["MAX_SCALE"],
        precision=4
    )
    target_axis: EnumProperty(
        name="Axis",
        items=[
            ('x', "X", "Fit width"),
            ('y', "Y", "Fit depth"),
            ('z', "Z", "Fit height"),
        ],
        default='x'
    )
    target_size: FloatProperty(
        name="Target (mm)",
        description="Desired length on the chosen axis",
        default=100.0,
        min=0.0
    )
    dimensions: FloatVectorProperty(
        name="Size (mm)",
        size=3,
        default=(0.0, 0.0, 0.0)
    )
    base_size: FloatVectorProperty(
        name="Base Size (mm)",
        size=3,
        default=(0.0, 0.0, 0.0)
    )
    is_optimizing: BoolProperty(
        name="Optimizing",
        default=False
    )
    version: IntProperty(
        name="Version",
        default=0
    )


def settings_to_options(settings):
    """Convert PP_OptimizeSettings into a pipeline options dict."""
    return pipeline.make_options(
        max_triangles=settings.max_triangles if settings.use_max_triangles else None,
        preserve_edges=settings.preserve_edges,
        split_angle=settings.split_angle,
        split=settings.split,
        coarse_split_angle=settings.coarse_split_angle,
        flat_only=settings.flat_only,
        iterations=settings.iterations,
        weight=settings.weight,
    )


# ============================================================================
# SESSIONS - one per asset root
# ============================================================================

_sessions = {}


def find_root(obj):
    """Top-most parent of obj."""
    while obj.parent is not None:
        obj = obj.parent
    return obj


def get_session(root):
    session = _sessions.get(root.name)
    try:
        stale = session is None or (session.root is not None and session.root != root)
    except ReferenceError:
        # Previous root was deleted from the file
        stale = True

    if stale:
        session = pipeline.AssetSession(root.name)
        _sessions[root.name] = session
    return session


def _store_sizes(settings, session):
    if session.sizes is not None:
        settings.dimensions = session.sizes["scaled"]
        settings.base_size = session.sizes["base"]
    settings.uniform_scale = session.scale_state.scale


def _root_poll(context):
    obj = context.active_object
    return obj is not None and not context.scene.pp_scale.is_optimizing


# ============================================================================
# OPERATORS
# ============================================================================

class PP_OT_ground(Operator):
    """Rest the asset on Z=0 and measure it"""
    bl_idname = "printprep.ground"
    bl_label = "Ground & Measure"
    bl_options = {'REGISTER', 'UNDO'}

    @classmethod
    def poll(cls, context):
        return _root_poll(context)

    def execute(self, context):
        settings = context.scene.pp_scale
        root = find_root(context.active_object)
        session = get_session(root)

        if session.state == session.IDLE:
            session.attach(root, model_scale=settings.model_scale)
        else:
            session.ground()

        if session.sizes is None:
            self.report({'WARNING'}, f"{root.name}: no measurable geometry")
            return {'CANCELLED'}

        _store_sizes(settings, session)
        x, y, z = session.sizes["scaled"]
        self.report({'INFO'}, f"{root.name}: {x:.2f} x {y:.2f} x {z:.2f} mm")
        return {'FINISHED'}


class PP_OT_fit_dimension(Operator):
    """Scale uniformly so the chosen axis reaches the target size"""
    bl_idname = "printprep.fit_dimension"
    bl_label = "Fit Size"
    bl_options = {'REGISTER', 'UNDO'}

    @classmethod
    def poll(cls, context):
        return _root_poll(context)

    def execute(self, context):
        settings = context.scene.pp_scale
        root = find_root(context.active_object)
        session = get_session(root)

        if session.state == session.IDLE:
            session.attach(root, model_scale=settings.model_scale)

        scale = session.fit_dimension(settings.target_axis, settings.target_size)
        _store_sizes(settings, session)
        self.report({'INFO'}, f"Scale {scale:.4f}x")
        return {'FINISHED'}


class PP_OT_apply_scale(Operator):
    """Apply the uniform scale slider and re-ground"""
    bl_idname = "printprep.apply_scale"
    bl_label = "Apply Scale"
    bl_options = {'REGISTER', 'UNDO'}

    @classmethod
    def poll(cls, context):
        return _root_poll(context)

    def execute(self, context):
        settings = context.scene.pp_scale
        root = find_root(context.active_object)
        session = get_session(root)

        if session.state == session.IDLE:
            session.attach(root, model_scale=settings.model_scale)

        session.set_scale(settings.uniform_scale)
        _store_sizes(settings, session)
        return {'FINISHED'}


class PP_OT_optimize(Operator):
    """Split sharp edges and decimate every mesh of the asset"""
    bl_idname = "printprep.optimize"
    bl_label = "Optimize Mesh"
    bl_options = {'REGISTER', 'UNDO'}

    @classmethod
    def poll(cls, context):
        return _root_poll(context)

    def execute(self, context):
        scale_settings = context.scene.pp_scale
        options = settings_to_options(context.scene.pp_optimize)
        root = find_root(context.active_object)
        session = get_session(root)

        if session.state == session.IDLE:
            session.attach(root, model_scale=scale_settings.model_scale)

        scale_settings.is_optimizing = True
        try:
            results = session.optimize(options)
        except AssetBusyError as e:
            self.report({'WARNING'}, str(e))
            return {'CANCELLED'}
        finally:
            scale_settings.is_optimizing = False

        scale_settings.version = session.version
        utils.log_to_text("\n".join(session.report), LOG_TEXT_NAME)

        total = sum(r["triangles_after"] for r in results)
        degraded = pipeline.degraded_stages(results)
        if degraded:
            self.report({'WARNING'}, f"{total:,} triangles, {len(degraded)} stages fell back (see {LOG_TEXT_NAME})")
        else:
            self.report({'INFO'}, f"Optimized {len(results)} meshes to {total:,} triangles")
        return {'FINISHED'}


class PP_OT_weld(Operator):
    """Merge duplicate vertices of the active mesh"""
    bl_idname = "printprep.weld"
    bl_label = "Weld Vertices"
    bl_options = {'REGISTER', 'UNDO'}

    @classmethod
    def poll(cls, context):
        obj = context.active_object
        return obj and obj.type == 'MESH' and not context.scene.pp_scale.is_optimizing

    def execute(self, context):
        obj = context.active_object
        source = obj.data
        result = topology.normalize_mesh(source)

        if result.mesh != source:
            obj.data = result.mesh
            utils.discard_mesh(source)

        self.report({'INFO'}, f"{result.status}: {len(obj.data.vertices):,} vertices")
        return {'FINISHED'}


class PP_OT_mesh_stats(Operator):
    """Print mesh statistics to console"""
    bl_idname = "printprep.mesh_stats"
    bl_label = "Mesh Stats"

    @classmethod
    def poll(cls, context):
        obj = context.active_object
        return obj and obj.type == 'MESH'

    def execute(self, context):
        obj = context.active_object
        utils.print_mesh_stats(obj)
        tris = topology.triangle_count(obj.data)
        self.report({'INFO'}, f"{tris:,} triangles, {utils.get_vertex_count(obj):,} vertices")
        return {'FINISHED'}


# ============================================================================
# PANELS
# ============================================================================

class PP_PT_main(Panel):
    """Print Prep Main Panel"""
    bl_label = "Print Prep"
    bl_idname = "PP_PT_main"
    bl_space_type = 'VIEW_3D'
    bl_region_type = 'UI'
    bl_category = 'Print Prep'

    def draw(self, context):
        layout = self.layout
        obj = context.active_object
        scale = context.scene.pp_scale

        if obj is None:
            layout.label(text="Select an object", icon='INFO')
            return

        root = find_root(obj)
        box = layout.box()
        box.label(text=root.name, icon='OBJECT_DATA')
        if obj.type == 'MESH':
            row = box.row()
            row.label(text=f"V: {len(obj.data.vertices):,}")
            row.label(text=f"F: {len(obj.data.polygons):,}")
        layout.operator("printprep.mesh_stats", icon='INFO')

        if scale.is_optimizing:
            layout.label(text="Optimizing mesh...", icon='TIME')


class PP_PT_scale(Panel):
    """Grounding and Dimension Panel"""
    bl_label = "Size & Scale"
    bl_idname = "PP_PT_scale"
    bl_space_type = 'VIEW_3D'
    bl_region_type = 'UI'
    bl_category = 'Print Prep'
    bl_parent_id = "PP_PT_main"

    def draw(self, context):
        layout = self.layout
        settings = context.scene.pp_scale
        layout.enabled = not settings.is_optimizing

        layout.prop(settings, "model_scale")
        layout.operator("printprep.ground", icon='SNAP_FACE')

        col = layout.column(align=True)
        x, y, z = settings.dimensions
        col.label(text=f"X {x:.2f} mm   Y {y:.2f} mm   Z {z:.2f} mm")

        row = layout.row(align=True)
        row.prop(settings, "uniform_scale")
        row.operator("printprep.apply_scale", text="", icon='CHECKMARK')

        row = layout.row(align=True)
        row.prop(settings, "target_axis", expand=True)
        layout.prop(settings, "target_size")
        layout.operator("printprep.fit_dimension", icon='FULLSCREEN_ENTER')


class PP_PT_optimize(Panel):
    """Mesh Optimize Panel"""
    bl_label = "Mesh Optimize"
    bl_idname = "PP_PT_optimize"
    bl_space_type = 'VIEW_3D'
    bl_region_type = 'UI'
    bl_category = 'Print Prep'
    bl_parent_id = "PP_PT_main"
    bl_options = {'DEFAULT_CLOSED'}

    def draw(self, context):
        layout = self.layout
        settings = context.scene.pp_optimize
        layout.enabled = not context.scene.pp_scale.is_optimizing

        row = layout.row(align=True)
        row.prop(settings, "use_max_triangles", text="")
        sub = row.row(align=True)
        sub.enabled = settings.use_max_triangles
        sub.prop(settings, "max_triangles")

        layout.prop(settings, "preserve_edges")
        layout.prop(settings, "split_angle")
        layout.prop(settings, "split")
        row = layout.row()
        row.enabled = settings.split
        row.prop(settings, "coarse_split_angle")
        layout.prop(settings, "flat_only")

        col = layout.column(align=True)
        col.enabled = not settings.flat_only
        col.prop(settings, "iterations")
        sub = col.row()
        sub.enabled = settings.iterations > 0
        sub.prop(settings, "weight")

        layout.separator()
        layout.operator("printprep.optimize", icon='MOD_DECIM')
        layout.operator("printprep.weld", icon='AUTOMERGE_ON')


classes = [
    # Property Groups
    PP_OptimizeSettings,
    PP_ScaleSettings,
    # Operators
    PP_OT_ground,
    PP_OT_fit_dimension,
    PP_OT_apply_scale,
    PP_OT_optimize,
    PP_OT_weld,
    PP_OT_mesh_stats,
    # Panels
    PP_PT_main,
    PP_PT_scale,
    PP_PT_optimize,
]


def register():
    for cls in classes:
        bpy.utils.register_class(cls)

    # Register property groups
    bpy.types.Scene.pp_optimize = PointerProperty(type=PP_OptimizeSettings)
    bpy.types.Scene.pp_scale = PointerProperty(type=PP_ScaleSettings)


def unregister():
    # Unregister property groups
    del bpy.types.Scene.pp_optimize
    del bpy.types.Scene.pp_scale

    for cls in reversed(classes):
        bpy.utils.unregister_class(cls)

    _sessions.clear()


if __name__ == "__main__":
    register()
