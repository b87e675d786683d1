import cv2
import numpy as np

from .datatypes import Box


def get_box_size(box: Box):
    """Returns (width, height) of the box."""
    return (box.end_point[0] - box.start_point[0],
            box.end_point[1] - box.start_point[1])


def get_box_center(box: Box):
    """Returns the (x, y) midpoint of the box."""
    return (box.start_point[0] + (box.end_point[0] - box.start_point[0]) / 2,
            box.start_point[1] + (box.end_point[1] - box.start_point[1]) / 2)


def shift_box(box: Box, shift_factor) -> Box:
    """
    Translates the box by a vector expressed in fractions of its own size.

    Args:
        box: The box to shift.
        shift_factor: (fx, fy); the box moves by (fx * width, fy * height).

    Returns:
        A new Box carrying the same palm landmarks.
    """
    width, height = get_box_size(box)
    shift_x = width * shift_factor[0]
    shift_y = height * shift_factor[1]
    start_point = (box.start_point[0] + shift_x, box.start_point[1] + shift_y)
    end_point = (box.end_point[0] + shift_x, box.end_point[1] + shift_y)
    return Box(start_point, end_point, box.palm_landmarks)


def squarify_box(box: Box) -> Box:
    """Grows the shorter side so width == height, keeping the center fixed."""
    center_x, center_y = get_box_center(box)
    half_size = max(get_box_size(box)) / 2
    start_point = (center_x - half_size, center_y - half_size)
    end_point = (center_x + half_size, center_y + half_size)
    return Box(start_point, end_point, box.palm_landmarks)


def enlarge_box(box: Box, factor: float = 1.5) -> Box:
    """Scales width and height by `factor` about the box center."""
    center_x, center_y = get_box_center(box)
    width, height = get_box_size(box)
    half_width = factor * width / 2
    half_height = factor * height / 2
    start_point = (center_x - half_width, center_y - half_height)
    end_point = (center_x + half_width, center_y + half_height)
    return Box(start_point, end_point, box.palm_landmarks)


def calculate_landmarks_bounding_box(landmarks) -> Box:
    """
    Calculates the tightest box around a set of points.

    Args:
        landmarks: Iterable of (x, y) or (x, y, z) points. Only x and y are used.

    Returns:
        Box: Box without palm landmarks.
    """
    xs = [point[0] for point in landmarks]
    ys = [point[1] for point in landmarks]
    return Box((min(xs), min(ys)), (max(xs), max(ys)))


def cut_box_from_image_and_resize(box: Box, image: np.ndarray, crop_size) -> np.ndarray:
    """
    Extracts the region described by `box` from a frame and resamples it.

    The box may extend past the frame borders; samples falling outside the
    frame are filled with zeros.

    Args:
        box: Region to extract, in pixel coordinates of `image`.
        image: Frame of shape (1, height, width, channels).
        crop_size: (width, height) of the output.

    Returns:
        np.ndarray: float32 crop of shape (1, crop_height, crop_width, channels).

    Raises:
        ValueError: If the frame is not batched or the box has no area.
    """
    if image.ndim != 4:
        raise ValueError(f"Expected a frame of shape (1, height, width, channels), got {image.shape}.")

    crop_width, crop_height = int(crop_size[0]), int(crop_size[1])
    box_width, box_height = get_box_size(box)
    if box_width <= 0 or box_height <= 0:
        raise ValueError(f"Cannot cut a box of size {box_width}x{box_height}.")
    scale_x = crop_width / box_width
    scale_y = crop_height / box_height
    # Maps box.start_point to (0, 0) and box.end_point to (crop_width, crop_height)
    affine = np.array([
        [scale_x, 0.0, -box.start_point[0] * scale_x],
        [0.0, scale_y, -box.start_point[1] * scale_y],
    ], dtype=np.float64)

    source = image[0].astype(np.float32)
    crop = cv2.warpAffine(source, affine, (crop_width, crop_height),
                          flags=cv2.INTER_LINEAR,
                          borderMode=cv2.BORDER_CONSTANT,
                          borderValue=0)
    if crop.ndim == 2:  # cv2 drops a single channel axis
        crop = crop[:, :, np.newaxis]
    return crop[np.newaxis, ...]
