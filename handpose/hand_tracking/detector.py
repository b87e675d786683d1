import mediapipe as mp
import numpy as np

from ..utils.box import calculate_landmarks_bounding_box
from ..utils.datatypes import NUM_HAND_LANDMARKS, PALM_LANDMARK_IDS, Point


def _to_uint8_image(frame):
    """Drops the batch axis and converts a frame to the uint8 RGB image MediaPipe expects."""
    image = frame[0] if frame.ndim == 4 else frame
    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    return np.ascontiguousarray(image)


class MediaPipePalmDetector:
    """
    Full-frame palm detector backed by MediaPipe Hands.

    Implements estimate_hand_bounds(frame) for HandPipeline: the palm box is the
    bounding box of the 7 palm landmarks of the first hand found.
    """
    def __init__(self, config_manager=None,
                 static_image_mode=None,
                 min_detection_confidence=None):
        """
        Initializes the MediaPipePalmDetector.

        Args:
            config_manager (ConfigManager, optional): Settings are read from the 'palm_detector' section.
            static_image_mode (bool, optional): Overrides config if provided.
            min_detection_confidence (float, optional): Overrides config if provided.
        """
        if config_manager:
            default_static_mode = config_manager.get_setting('palm_detector.static_image_mode', True)
            default_min_detect_conf = config_manager.get_setting('palm_detector.min_detection_confidence', 0.5)
        else:
            default_static_mode = True
            default_min_detect_conf = 0.5

        self.static_image_mode = static_image_mode if static_image_mode is not None else default_static_mode
        self.min_detection_confidence = (min_detection_confidence if min_detection_confidence is not None
                                         else default_min_detect_conf)

        # Palm boxes are re-detected only when tracking is lost, so every call is a still image.
        self.hands = mp.solutions.hands.Hands(
            static_image_mode=self.static_image_mode,
            max_num_hands=1,
            min_detection_confidence=self.min_detection_confidence,
        )

    def estimate_hand_bounds(self, frame):
        """
        Finds the palm of one hand in a frame.

        Args:
            frame (np.ndarray): RGB frame of shape (1, height, width, channels).

        Returns:
            Box | None: Palm box in pixel coordinates with its palm landmarks,
                        or None if no hand is visible.
        """
        image = _to_uint8_image(frame)
        height, width = image.shape[:2]
        results = self.hands.process(image)
        if not results.multi_hand_landmarks:
            return None

        hand = results.multi_hand_landmarks[0]
        palm_landmarks = [Point(hand.landmark[i].x * width, hand.landmark[i].y * height)
                          for i in PALM_LANDMARK_IDS]
        box = calculate_landmarks_bounding_box(palm_landmarks)
        return box._replace(palm_landmarks=palm_landmarks)

    def close(self):
        """
        Releases resources used by the MediaPipe Hands solution.
        """
        self.hands.close()


class MediaPipeLandmarkModel:
    """
    Hand landmark model backed by MediaPipe Hands, run on the rotated hand crop.

    Implements predict(hand_image) for HandPipeline. Keypoints are returned in
    crop pixel coordinates, 21 x (x, y, z) flattened to 63 values.
    """
    def __init__(self, config_manager=None,
                 min_detection_confidence=None):
        """
        Initializes the MediaPipeLandmarkModel.

        Args:
            config_manager (ConfigManager, optional): Settings are read from the 'landmark_model' section.
            min_detection_confidence (float, optional): Overrides config if provided.
        """
        if config_manager:
            default_min_detect_conf = config_manager.get_setting('landmark_model.min_detection_confidence', 0.5)
        else:
            default_min_detect_conf = 0.5

        self.min_detection_confidence = (min_detection_confidence if min_detection_confidence is not None
                                         else default_min_detect_conf)
        self.packed_convolution = False
        self.hands = mp.solutions.hands.Hands(
            static_image_mode=True,
            max_num_hands=1,
            min_detection_confidence=self.min_detection_confidence,
        )

    def supports_packed_convolution(self):
        return False

    def predict(self, hand_image):
        """
        Estimates the hand landmarks inside a normalized crop.

        Args:
            hand_image (np.ndarray): Crop of shape (1, height, width, 3) with values in [0, 1].

        Returns:
            tuple: (confidence, keypoints) as numpy arrays of shape (1,) and (63,).
                   Confidence is 0 when no hand is found in the crop.
        """
        image = _to_uint8_image(hand_image * 255.0)
        height, width = image.shape[:2]
        results = self.hands.process(image)
        if not results.multi_hand_landmarks:
            return np.zeros(1, dtype=np.float32), np.zeros(NUM_HAND_LANDMARKS * 3, dtype=np.float32)

        confidence = 1.0
        if results.multi_handedness:
            confidence = results.multi_handedness[0].classification[0].score

        hand = results.multi_hand_landmarks[0]
        # MediaPipe's z shares the scale of x
        keypoints = np.array([(lm.x * width, lm.y * height, lm.z * width) for lm in hand.landmark],
                             dtype=np.float32)
        return np.array([confidence], dtype=np.float32), keypoints.reshape(-1)

    def close(self):
        """
        Releases resources used by the MediaPipe Hands solution.
        """
        self.hands.close()
