"""
Local reference frames for atomic multipoles.
"""

import numpy as np
from typing import Optional

from ..errors import FrameError
from ..models.records import FrameKind

FRAME_EPS = 1e-8

def _unit(vec: np.ndarray, what: str) -> np.ndarray:
    norm = np.linalg.norm(vec)
    if norm < FRAME_EPS:
        raise FrameError(f"Degenerate local frame: zero-length {what}")
    return vec / norm

def _orthogonal(vec: np.ndarray, z_axis: np.ndarray, what: str) -> np.ndarray:
    """Component of vec perpendicular to z_axis, normalized."""
    perp = vec - np.dot(vec, z_axis) * z_axis
    if np.linalg.norm(perp) < FRAME_EPS * max(np.linalg.norm(vec), 1.0):
        raise FrameError(f"Degenerate local frame: {what} is collinear with the z axis")
    return perp / np.linalg.norm(perp)

def _require(pos: Optional[np.ndarray], what: str) -> np.ndarray:
    if pos is None:
        raise FrameError(f"Degenerate local frame: missing {what} reference atom")
    return np.asarray(pos, dtype=float)

def local_frame(kind: FrameKind, center, z_pos=None, x_pos=None, y_pos=None,
                chiral_flip: bool = False) -> np.ndarray:
    """
    Build an orthonormal local frame.

    Args:
        kind: Frame convention
        center: Position of the atom carrying the multipole
        z_pos, x_pos, y_pos: Positions of the reference atoms
        chiral_flip: Negate the y axis

    Returns:
        3x3 array whose rows are the x, y, z axes in global coordinates

    Raises:
        FrameError: if the reference atoms do not define the frame
    """
    center = np.asarray(center, dtype=float)

    if kind == FrameKind.NONE:
        frame = np.eye(3)
    else:
        dz = _unit(_require(z_pos, "z") - center, "z bond")

        if kind == FrameKind.Z_THEN_X:
            z_axis = dz
            dx = _require(x_pos, "x") - center
            x_axis = _orthogonal(dx, z_axis, "x bond")

        elif kind == FrameKind.BISECTOR:
            dx = _unit(_require(x_pos, "x") - center, "x bond")
            z_axis = _unit(dz + dx, "bisector")
            x_axis = _orthogonal(dx, z_axis, "x bond")

        elif kind == FrameKind.Z_ONLY:
            z_axis = dz
            # Global x unless z is nearly along it
            trial = np.array([1.0, 0.0, 0.0])
            if abs(np.dot(trial, z_axis)) > 0.866:
                trial = np.array([0.0, 1.0, 0.0])
            x_axis = _orthogonal(trial, z_axis, "synthesized x axis")

        elif kind == FrameKind.Z_BISECT:
            z_axis = dz
            dx = _unit(_require(x_pos, "x") - center, "x bond")
            dy = _unit(_require(y_pos, "y") - center, "y bond")
            x_axis = _orthogonal(dx + dy, z_axis, "x/y bisector")

        elif kind == FrameKind.THREE_FOLD:
            dx = _unit(_require(x_pos, "x") - center, "x bond")
            dy = _unit(_require(y_pos, "y") - center, "y bond")
            z_axis = _unit(dz + dx + dy, "3-fold axis")
            x_axis = _orthogonal(dx, z_axis, "x bond")

        else:
            raise FrameError(f"Unknown frame kind: {kind}")

        y_axis = np.cross(z_axis, x_axis)
        frame = np.vstack([x_axis, y_axis, z_axis])

    if chiral_flip:
        frame = frame.copy()
        frame[1] = -frame[1]
    return frame
