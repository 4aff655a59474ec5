"""
mesh_ops.dimensions - Physical Dimensioning

Turns a target size in millimeters on one axis into a uniform scale factor.
Pure numeric; the only mesh-facing call is apply_uniform_scale.
"""

import math

from .utils import log

SCALE_LIMITS = {
    "MIN_SCALE": 0.05,
    "MAX_SCALE": 10.0,
    "DECIMALS": 4,
}

AXES = ("x", "y", "z")


def _axis_index(axis):
    if isinstance(axis, str):
        return AXES.index(axis.lower())
    return int(axis)


def clamp_scale(scale, min_scale=None, max_scale=None):
    lo = SCALE_LIMITS["MIN_SCALE"] if min_scale is None else min_scale
    hi = SCALE_LIMITS["MAX_SCALE"] if max_scale is None else max_scale
    return min(hi, max(lo, scale))


def solve_uniform_scale(target, base_size, existing_scale=1.0, current_scale=1.0,
                        min_scale=None, max_scale=None):
    """
    Uniform scale that makes one axis measure ``target``.

    Args:
        target: Desired length on the axis (mm)
        base_size: Unscaled length of the model on that axis (mm)
        existing_scale: Scale already applied outside this solver
        current_scale: Returned unchanged when the inputs are unusable
        min_scale, max_scale: Clamp range (defaults from SCALE_LIMITS)

    Returns:
        target / base_size / existing_scale, clamped and rounded
    """
    values = (target, base_size, existing_scale)
    if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
        return current_scale
    if target <= 0 or base_size <= 0 or existing_scale <= 0:
        return current_scale

    raw = target / base_size / existing_scale
    return round(clamp_scale(raw, min_scale, max_scale), SCALE_LIMITS["DECIMALS"])


# ============================================================================
# SCALE STATE
# ============================================================================

class ScaleState:
    """Uniform scale chosen by the user on top of the asset's own model scale."""

    def __init__(self, scale=1.0, model_scale=1.0, min_scale=None, max_scale=None):
        self.min_scale = SCALE_LIMITS["MIN_SCALE"] if min_scale is None else min_scale
        self.max_scale = SCALE_LIMITS["MAX_SCALE"] if max_scale is None else max_scale
        self.model_scale = model_scale or 1.0
        self.scale = clamp_scale(scale, self.min_scale, self.max_scale)

    def __repr__(self):
        return f"ScaleState(scale={self.scale}, model_scale={self.model_scale})"

    @property
    def total_scale(self):
        return self.model_scale * self.scale

    def set_scale(self, scale):
        if isinstance(scale, (int, float)) and math.isfinite(scale):
            self.scale = clamp_scale(scale, self.min_scale, self.max_scale)
        return self.scale

    def fit_axis(self, axis, target, base_size, report=None):
        """Solve and store the scale that gives ``axis`` the target length."""
        base = base_size[_axis_index(axis)]
        new_scale = solve_uniform_scale(
            target, base,
            existing_scale=self.model_scale,
            current_scale=self.scale,
            min_scale=self.min_scale,
            max_scale=self.max_scale,
        )
        if new_scale == self.scale:
            log(f"[Scale] {axis}: target {target} mm left scale at {self.scale:.4f}x", report)
        else:
            log(f"[Scale] {axis}: target {target} mm -> {new_scale:.4f}x", report)
        self.scale = new_scale
        return new_scale

    def target_dimensions(self, base_size):
        """Per-axis size in mm after applying model and uniform scale."""
        return tuple(b * self.total_scale for b in base_size)


def apply_uniform_scale(obj, state):
    """Write the state's total scale onto the object."""
    s = state.total_scale
    obj.scale = (s, s, s)
    return s
