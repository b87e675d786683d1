import math

import numpy as np


def normalize_radians(angle: float) -> float:
    """
    Wraps an angle into the range [-pi, pi).

    Args:
        angle: Angle in radians.

    Returns:
        The equivalent angle in [-pi, pi).
    """
    return angle - 2 * math.pi * math.floor((angle + math.pi) / (2 * math.pi))


def compute_rotation(point1, point2) -> float:
    """
    Computes the rotation that brings the vector point1 -> point2 to vertical.

    Image coordinates are used (y grows downwards), so a hand whose middle
    finger base sits straight above its palm base yields an angle of 0.

    Args:
        point1: (x, y) of the reference point, e.g. the palm base.
        point2: (x, y) of the target point, e.g. the middle finger base.

    Returns:
        The rotation angle in radians, normalized to [-pi, pi).
    """
    radians = math.pi / 2 - math.atan2(-(point2[1] - point1[1]), point2[0] - point1[0])
    return normalize_radians(radians)


def build_rotation_matrix(rotation: float, center) -> np.ndarray:
    """
    Builds the 2x3 affine matrix rotating points by `rotation` around `center`.

    The matrix maps p to center + R(rotation) (p - center) with
    R = [[cos, -sin], [sin, cos]].

    Args:
        rotation: Angle in radians.
        center: (x, y) pivot of the rotation.

    Returns:
        A numpy array of shape (2, 3).
    """
    cos_a = math.cos(rotation)
    sin_a = math.sin(rotation)
    cx, cy = center[0], center[1]
    return np.array([
        [cos_a, -sin_a, cx - cos_a * cx + sin_a * cy],
        [sin_a, cos_a, cy - sin_a * cx - cos_a * cy],
    ], dtype=np.float64)


def dot(v1, v2) -> float:
    """Dot product of two equally sized vectors."""
    return float(sum(a * b for a, b in zip(v1, v2)))


def rotate_point(homogeneous_coordinate, rotation_matrix):
    """
    Applies a 2x3 affine matrix to a homogeneous point [x, y, 1].

    Returns:
        tuple: The transformed (x, y).
    """
    return (dot(homogeneous_coordinate, rotation_matrix[0]),
            dot(homogeneous_coordinate, rotation_matrix[1]))


def invert_transform_matrix(matrix) -> np.ndarray:
    """
    Inverts a rigid 2x3 affine transform (rotation + translation).

    The linear part of a rotation is orthonormal, so its inverse is its
    transpose and the translation becomes -R^T t.

    Args:
        matrix: A 2x3 rotation matrix, e.g. from build_rotation_matrix.

    Returns:
        The inverse transform as a numpy array of shape (2, 3).
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    rotation_component = matrix[:, :2].T
    translation_component = matrix[:, 2]
    inverted_translation = -rotation_component.dot(translation_component)
    return np.hstack([rotation_component, inverted_translation.reshape(2, 1)])