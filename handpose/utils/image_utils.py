import contextlib

import cv2
import numpy as np

from .math_utils import build_rotation_matrix


def to_frame(image: np.ndarray) -> np.ndarray:
    """
    Adds the batch axis expected by the pipeline to a single image.

    Args:
        image: Array of shape (height, width, channels) or already batched
               (1, height, width, channels).

    Returns:
        np.ndarray: Array of shape (1, height, width, channels).
    """
    if image.ndim == 3:
        return image[np.newaxis, ...]
    return image


def get_frame_size(frame: np.ndarray):
    """Returns (width, height) of a (batch, height, width, channels) frame."""
    return frame.shape[2], frame.shape[1]


def rotate_with_offset(frame: np.ndarray, radians: float, fill_value=0, center=(0.5, 0.5)) -> np.ndarray:
    """
    Rotates a frame counter-clockwise (as seen on screen) about an offset center.

    The pixel at p in the input lands at
    build_rotation_matrix(-radians, center_px) applied to p in the output, so
    that matrix can be used to follow points into the rotated frame.

    Args:
        frame: Array of shape (1, height, width, channels).
        radians: Rotation angle.
        fill_value: Value for pixels rotated in from outside the frame.
        center: Rotation center as fractions (x, y) of the frame width/height.

    Returns:
        np.ndarray: The rotated frame, same shape and dtype as the input.
    """
    width, height = get_frame_size(frame)
    center_px = (center[0] * width, center[1] * height)
    matrix = build_rotation_matrix(-radians, center_px)
    rotated = cv2.warpAffine(frame[0], matrix, (width, height),
                             flags=cv2.INTER_LINEAR,
                             borderMode=cv2.BORDER_CONSTANT,
                             borderValue=fill_value)
    if rotated.ndim == 2:
        rotated = rotated[:, :, np.newaxis]
    return rotated[np.newaxis, ...]


def normalize_pixels(image: np.ndarray) -> np.ndarray:
    """Scales 0-255 pixel values into the unit range as float32."""
    return image.astype(np.float32) / 255.0


def release_buffer(*buffers):
    """
    Releases transient buffers handed out by a model or image backend.

    Buffers exposing dispose() or close() are released through it; plain
    numpy arrays are left to the caller dropping its reference.
    """
    for buffer in buffers:
        if buffer is None:
            continue
        release = getattr(buffer, 'dispose', None) or getattr(buffer, 'close', None)
        if callable(release):
            release()


@contextlib.contextmanager
def transient_buffer(buffer):
    """Yields `buffer` and releases it when the block exits, normally or not."""
    try:
        yield buffer
    finally:
        release_buffer(buffer)
