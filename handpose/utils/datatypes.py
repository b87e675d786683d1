from typing import NamedTuple, Optional, Sequence, Tuple

class Point(NamedTuple):
    """Represents a 2D point with x and y coordinates."""
    x: float
    y: float

class Point3D(NamedTuple):
    """Represents a 3D point with x, y, and z (depth-like) coordinates."""
    x: float
    y: float
    z: float

class Box(NamedTuple):
    """
    Axis-aligned box in frame pixel coordinates.

    start_point is component-wise <= end_point. palm_landmarks, when present,
    holds the 7 palm points (2D) matching PALM_LANDMARK_IDS of the hand skeleton.
    """
    start_point: Tuple[float, float]
    end_point: Tuple[float, float]
    palm_landmarks: Optional[Sequence[Tuple[float, float]]] = None

class BoxCorners(NamedTuple):
    """Corners of the hand box reported with a result."""
    top_left: Tuple[float, float]
    bottom_right: Tuple[float, float]

class HandResult(NamedTuple):
    """Landmarks of one hand found in a frame, in original frame coordinates."""
    landmarks: list  # 21 (x, y, z) points
    confidence: float
    box: BoxCorners

class EstimateConfig(NamedTuple):
    """Per-call options for HandPipeline.estimate_hand."""
    min_confidence: float

# Hand skeleton indices that make up the palm, in palm detector keypoint order.
PALM_LANDMARK_IDS = (0, 5, 9, 13, 17, 1, 2)
# Positions inside PALM_LANDMARK_IDS used to compute the hand orientation.
PALM_LANDMARKS_INDEX_OF_PALM_BASE = 0
PALM_LANDMARKS_INDEX_OF_MIDDLE_FINGER_BASE = 2

NUM_HAND_LANDMARKS = 21
