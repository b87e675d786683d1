import contextlib

import numpy as np

from .config_manager import ConfigManager
from .hand_tracking.region_tracker import RegionTracker
from .utils import box as bounding
from .utils.datatypes import (
    BoxCorners,
    HandResult,
    NUM_HAND_LANDMARKS,
    PALM_LANDMARK_IDS,
    PALM_LANDMARKS_INDEX_OF_MIDDLE_FINGER_BASE,
    PALM_LANDMARKS_INDEX_OF_PALM_BASE,
    Point,
    Point3D,
)
from .utils.image_utils import (
    get_frame_size,
    normalize_pixels,
    release_buffer,
    rotate_with_offset,
    to_frame,
    transient_buffer,
)
from .utils.math_utils import (
    build_rotation_matrix,
    compute_rotation,
    invert_transform_matrix,
    rotate_point,
)

# The palm box only surrounds the palm: shift it towards the fingers, then
# squarify and enlarge it so it covers the whole hand.
PALM_BOX_SHIFT_VECTOR = (0, -0.4)
PALM_BOX_ENLARGE_FACTOR = 3
# The landmark model is trained on hands with empty space around them.
HAND_BOX_SHIFT_VECTOR = (0, -0.1)
HAND_BOX_ENLARGE_FACTOR = 1.65

DEFAULT_MESH_SIZE = 256
DEFAULT_MAX_CONTINUOUS_CHECKS = float('inf')
DEFAULT_DETECTION_CONFIDENCE = 0.8


@contextlib.contextmanager
def packed_convolution(model):
    """
    Enables packed convolutions on the model for the duration of the block,
    restoring its previous setting afterwards. Models that do not report the
    capability through supports_packed_convolution() are left untouched.
    """
    supports = getattr(model, 'supports_packed_convolution', None)
    if not callable(supports) or not supports():
        yield
        return
    saved_flag = model.packed_convolution
    model.packed_convolution = True
    try:
        yield
    finally:
        model.packed_convolution = saved_flag


def reshape_keypoints(keypoints):
    """Reshapes a flat keypoint tensor into a list of (x, y, z) tuples."""
    values = np.asarray(keypoints, dtype=np.float64).reshape(-1)
    if values.size % 3 != 0:
        raise ValueError(f"Keypoint tensor size must be a multiple of 3, got {values.size}.")
    return [tuple(point) for point in values.reshape(-1, 3).tolist()]


class HandPipeline:
    """
    Coordinates the palm detector and the hand landmark model for one hand.

    The palm detector runs on the whole frame only when no hand region is
    tracked (or after max_continuous_checks tracked frames). Otherwise the
    region derived from the previous frame's landmarks is reused.
    """

    def __init__(self, bounding_box_detector, mesh_detector, config_manager: ConfigManager = None,
                 mesh_width=None, mesh_height=None, max_continuous_checks=None,
                 detection_confidence=None, legacy_iou=None, verbose=None):
        """
        Initializes the HandPipeline.

        Args:
            bounding_box_detector: Object with estimate_hand_bounds(frame) -> Box | None.
            mesh_detector: Object with predict(hand_image) -> (confidence, keypoints).
            config_manager (ConfigManager, optional): Settings are read from the
                                                      'pipeline' and 'tracker' sections.
            mesh_width (int, optional): Landmark model input width. Overrides config.
            mesh_height (int, optional): Landmark model input height. Overrides config.
            max_continuous_checks (int | float, optional): Overrides config.
            detection_confidence (float, optional): Default minimum landmark confidence. Overrides config.
            legacy_iou (bool, optional): Overrides config.
            verbose (bool, optional): Print a line whenever tracking is reset. Overrides config.
        """
        if config_manager:
            default_mesh_width = config_manager.get_setting('pipeline.mesh_input_width', DEFAULT_MESH_SIZE)
            default_mesh_height = config_manager.get_setting('pipeline.mesh_input_height', DEFAULT_MESH_SIZE)
            default_max_checks = config_manager.get_setting('pipeline.max_continuous_checks',
                                                            DEFAULT_MAX_CONTINUOUS_CHECKS)
            default_confidence = config_manager.get_setting('pipeline.detection_confidence',
                                                            DEFAULT_DETECTION_CONFIDENCE)
            default_legacy_iou = config_manager.get_setting('tracker.legacy_iou', False)
            default_verbose = config_manager.get_setting('pipeline.verbose', False)
        else:
            default_mesh_width = DEFAULT_MESH_SIZE
            default_mesh_height = DEFAULT_MESH_SIZE
            default_max_checks = DEFAULT_MAX_CONTINUOUS_CHECKS
            default_confidence = DEFAULT_DETECTION_CONFIDENCE
            default_legacy_iou = False
            default_verbose = False

        self.mesh_width = mesh_width if mesh_width is not None else default_mesh_width
        self.mesh_height = mesh_height if mesh_height is not None else default_mesh_height
        self.max_continuous_checks = max_continuous_checks if max_continuous_checks is not None else default_max_checks
        self.detection_confidence = detection_confidence if detection_confidence is not None else default_confidence
        self.verbose = verbose if verbose is not None else default_verbose
        legacy_iou = legacy_iou if legacy_iou is not None else default_legacy_iou

        if self.mesh_width <= 0 or self.mesh_height <= 0:
            raise ValueError(f"Landmark model input size must be positive, got "
                             f"{self.mesh_width}x{self.mesh_height}.")

        self.bounding_box_detector = bounding_box_detector
        self.mesh_detector = mesh_detector
        self.region_tracker = RegionTracker(max_continuous_checks=self.max_continuous_checks,
                                            legacy_iou=legacy_iou)

    def get_box_for_palm_landmarks(self, palm_landmarks, rotation_matrix):
        """
        Builds the hand box, in rotated frame coordinates, around the palm
        landmarks of a fresh detection.
        """
        rotated_palm_landmarks = [
            rotate_point((coord[0], coord[1], 1), rotation_matrix) for coord in palm_landmarks
        ]
        box_around_palm = bounding.calculate_landmarks_bounding_box(rotated_palm_landmarks)
        return bounding.enlarge_box(
            bounding.squarify_box(bounding.shift_box(box_around_palm, PALM_BOX_SHIFT_VECTOR)),
            PALM_BOX_ENLARGE_FACTOR)

    def get_box_for_hand_landmarks(self, landmarks):
        """
        Builds the region to track on the next frame from all 21 hand landmarks.

        Returns:
            Box: The enlarged hand box, with the palm landmarks (2D) of `landmarks`.
        """
        bounding_box = bounding.calculate_landmarks_bounding_box(landmarks)
        box_around_hand = bounding.enlarge_box(
            bounding.squarify_box(bounding.shift_box(bounding_box, HAND_BOX_SHIFT_VECTOR)),
            HAND_BOX_ENLARGE_FACTOR)
        palm_landmarks = [Point(landmarks[i][0], landmarks[i][1]) for i in PALM_LANDMARK_IDS]
        return box_around_hand._replace(palm_landmarks=palm_landmarks)

    def transform_raw_coords(self, raw_coords, box, angle, rotation_matrix):
        """
        Maps landmark model keypoints back into original frame coordinates.

        Args:
            raw_coords: (x, y, z) keypoints in landmark model input pixels.
            box (Box): The crop box, in rotated frame coordinates.
            angle (float): Alignment angle used to rotate the frame.
            rotation_matrix: Matrix taking frame coordinates into the rotated frame.

        Returns:
            list: Point3D landmarks in original frame coordinates; z is passed through.
        """
        box_width, box_height = bounding.get_box_size(box)
        scale_x = box_width / self.mesh_width
        scale_y = box_height / self.mesh_height

        coords_rotation_matrix = build_rotation_matrix(angle, (0, 0))
        inverse_rotation_matrix = invert_transform_matrix(rotation_matrix)
        box_center_x, box_center_y = bounding.get_box_center(box)
        original_center_x, original_center_y = rotate_point((box_center_x, box_center_y, 1),
                                                            inverse_rotation_matrix)

        coords = []
        for x, y, z in raw_coords:
            scaled = (scale_x * (x - self.mesh_width / 2), scale_y * (y - self.mesh_height / 2), 1)
            rotated_x, rotated_y = rotate_point(scaled, coords_rotation_matrix)
            coords.append(Point3D(rotated_x + original_center_x, rotated_y + original_center_y, z))
        return coords

    def estimate_hand(self, image, config=None):
        """
        Runs one frame through the pipeline.

        Args:
            image (np.ndarray): RGB frame of shape (1, height, width, channels).
                                A single (height, width, channels) image is batched first.
            config (EstimateConfig, optional): Per-call options. min_confidence
                                               defaults to detection_confidence.

        Returns:
            HandResult | None: The hand found in the frame, or None when no palm
                               was detected, the hand box collapsed to zero size
                               or the landmark confidence is too low.
        """
        image = to_frame(image)
        min_confidence = config.min_confidence if config is not None else self.detection_confidence

        use_fresh_box = self.region_tracker.should_run_full_detection()
        if use_fresh_box:
            palm_box = self.bounding_box_detector.estimate_hand_bounds(image)
            if palm_box is None:
                release_buffer(image)
                self._reset_tracking("no palm detected")
                return None
            self.region_tracker.update_region(palm_box, force_replace=True)
        else:
            self.region_tracker.mark_tracked_frame()

        # Rotate the input so the hand is vertically oriented.
        current_box = self.region_tracker.current_region
        angle = compute_rotation(current_box.palm_landmarks[PALM_LANDMARKS_INDEX_OF_PALM_BASE],
                                 current_box.palm_landmarks[PALM_LANDMARKS_INDEX_OF_MIDDLE_FINGER_BASE])
        palm_center = bounding.get_box_center(current_box)
        frame_width, frame_height = get_frame_size(image)
        palm_center_normalized = (palm_center[0] / frame_width, palm_center[1] / frame_height)
        rotation_matrix = build_rotation_matrix(-angle, palm_center)

        # A fresh detection only gives the palm, so the hand box is built from its landmarks.
        if use_fresh_box:
            box = self.get_box_for_palm_landmarks(current_box.palm_landmarks, rotation_matrix)
        else:
            box = current_box

        box_width, box_height = bounding.get_box_size(box)
        if box_width <= 0 or box_height <= 0:
            self._reset_tracking("degenerate hand box")
            return None

        with transient_buffer(rotate_with_offset(image, angle, 0, palm_center_normalized)) as rotated_image:
            with transient_buffer(bounding.cut_box_from_image_and_resize(
                    box, rotated_image, (self.mesh_width, self.mesh_height))) as cropped_input:
                hand_image = normalize_pixels(cropped_input)

        with transient_buffer(hand_image):
            with packed_convolution(self.mesh_detector):
                flag, keypoints = self.mesh_detector.predict(hand_image)

        with transient_buffer(flag):
            confidence = float(np.asarray(flag, dtype=np.float64).reshape(-1)[0])

        with transient_buffer(keypoints):
            if confidence < min_confidence:
                self._reset_tracking(f"landmark confidence {confidence:.2f} below {min_confidence:.2f}")
                return None
            raw_coords = reshape_keypoints(keypoints)

        if len(raw_coords) != NUM_HAND_LANDMARKS:
            raise ValueError(f"Expected {NUM_HAND_LANDMARKS} keypoints, got {len(raw_coords)}.")

        coords = self.transform_raw_coords(raw_coords, box, angle, rotation_matrix)
        next_bounding_box = self.get_box_for_hand_landmarks(coords)
        self.region_tracker.update_region(next_bounding_box, force_replace=False)

        return HandResult(
            landmarks=coords,
            confidence=confidence,
            box=BoxCorners(top_left=next_bounding_box.start_point,
                           bottom_right=next_bounding_box.end_point),
        )

    def reset(self):
        """Forgets the tracked hand; the next frame runs the palm detector."""
        self.region_tracker.reset()

    def _reset_tracking(self, reason):
        self.region_tracker.reset()
        if self.verbose:
            print(f"HandPipeline: tracking reset ({reason}).")
