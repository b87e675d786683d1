import unittest
from unittest.mock import MagicMock, patch
import numpy as np

# Ensure handpose is discoverable
import sys
import os
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from handpose.hand_tracking.detector import MediaPipePalmDetector, MediaPipeLandmarkModel
from handpose.config_manager import ConfigManager # For creating a mock config manager
from handpose.utils.datatypes import PALM_LANDMARK_IDS

# Mock the MediaPipe landmark structures returned by Hands.process
class MockHandLandmark:
    def __init__(self, x, y, z):
        self.x = x
        self.y = y
        self.z = z

class MockMultiHandLandmarks:
    def __init__(self, landmarks_list):
        self.landmark = [MockHandLandmark(lm.x, lm.y, lm.z) for lm in landmarks_list]

class MockMediaPipeResults:
    def __init__(self, multi_hand_landmarks_data=None, multi_handedness_scores=None):
        if multi_hand_landmarks_data:
            self.multi_hand_landmarks = [MockMultiHandLandmarks(hand_lms) for hand_lms in multi_hand_landmarks_data]
        else:
            self.multi_hand_landmarks = None

        if multi_handedness_scores:
            self.multi_handedness = []
            for score in multi_handedness_scores:
                mock_classification = MagicMock()
                mock_classification.score = score
                mock_handedness_item = MagicMock()
                mock_handedness_item.classification = [mock_classification]
                self.multi_handedness.append(mock_handedness_item)
        else:
            self.multi_handedness = None

def make_hand(offset=0.0):
    """21 normalized landmarks; landmark i sits at (0.02 * i + offset, 0.04 * i + offset)."""
    return [MockHandLandmark(x=0.02 * i + offset, y=0.04 * i + offset, z=-0.01 * i) for i in range(21)]


class TestMediaPipePalmDetector(unittest.TestCase):

    def setUp(self):
        self.mock_cm_data = {
            'palm_detector.static_image_mode': False,
            'palm_detector.min_detection_confidence': 0.6,
        }
        self.mock_config_manager = MagicMock(spec=ConfigManager)
        self.mock_config_manager.get_setting.side_effect = lambda key, default=None: self.mock_cm_data.get(key, default)

        # Patch mediapipe before the detector is instantiated
        self.mock_mp_patcher = patch('handpose.hand_tracking.detector.mp')
        self.mock_mp = self.mock_mp_patcher.start()
        self.mock_mp_hands_class = self.mock_mp.solutions.hands.Hands
        self.mock_mp_hands_instance = self.mock_mp_hands_class.return_value
        self.mock_mp_hands_instance.process.return_value = MockMediaPipeResults() # Default: no hands

        self.detector = MediaPipePalmDetector(config_manager=self.mock_config_manager)
        self.frame = np.zeros((1, 480, 640, 3), dtype=np.uint8)

    def tearDown(self):
        self.mock_mp_patcher.stop()

    def test_initialization_with_config_manager(self):
        self.assertFalse(self.detector.static_image_mode)
        self.assertEqual(self.detector.min_detection_confidence, 0.6)
        self.mock_mp_hands_class.assert_called_once_with(
            static_image_mode=False,
            max_num_hands=1,
            min_detection_confidence=0.6
        )

    def test_initialization_direct_params_override_config(self):
        self.mock_mp_hands_class.reset_mock()
        detector_override = MediaPipePalmDetector(
            config_manager=self.mock_config_manager,
            static_image_mode=True,
            min_detection_confidence=0.9
        )
        self.assertTrue(detector_override.static_image_mode)
        self.assertEqual(detector_override.min_detection_confidence, 0.9)
        self.mock_mp_hands_class.assert_called_once_with(
            static_image_mode=True,
            max_num_hands=1,
            min_detection_confidence=0.9
        )

    def test_initialization_defaults(self):
        detector = MediaPipePalmDetector()
        self.assertTrue(detector.static_image_mode)
        self.assertEqual(detector.min_detection_confidence, 0.5)

    def test_estimate_hand_bounds_no_hands(self):
        self.assertIsNone(self.detector.estimate_hand_bounds(self.frame))

    def test_estimate_hand_bounds_one_hand(self):
        self.mock_mp_hands_instance.process.return_value = MockMediaPipeResults(
            multi_hand_landmarks_data=[make_hand()])

        box = self.detector.estimate_hand_bounds(self.frame)

        self.assertEqual(len(box.palm_landmarks), 7)
        # Palm base (landmark 0) and middle finger base (landmark 9), denormalized
        self.assertEqual(box.palm_landmarks[0], (0.0, 0.0))
        self.assertAlmostEqual(box.palm_landmarks[2][0], 0.18 * 640)
        self.assertAlmostEqual(box.palm_landmarks[2][1], 0.36 * 480)
        # Palm landmarks span ids 0 to 17
        self.assertEqual(box.start_point, (0.0, 0.0))
        self.assertAlmostEqual(box.end_point[0], 0.34 * 640)
        self.assertAlmostEqual(box.end_point[1], 0.68 * 480)
        expected = [(0.02 * i * 640, 0.04 * i * 480) for i in PALM_LANDMARK_IDS]
        np.testing.assert_allclose(box.palm_landmarks, expected)

    def test_estimate_hand_bounds_passes_unbatched_uint8_image(self):
        frame = np.full((1, 48, 64, 3), 300.0, dtype=np.float32)
        self.detector.estimate_hand_bounds(frame)
        image = self.mock_mp_hands_instance.process.call_args[0][0]
        self.assertEqual(image.shape, (48, 64, 3))
        self.assertEqual(image.dtype, np.uint8)
        self.assertEqual(image.max(), 255)

    def test_close_method(self):
        self.detector.close()
        self.mock_mp_hands_instance.close.assert_called_once()


class TestMediaPipeLandmarkModel(unittest.TestCase):

    def setUp(self):
        self.mock_mp_patcher = patch('handpose.hand_tracking.detector.mp')
        self.mock_mp = self.mock_mp_patcher.start()
        self.mock_mp_hands_class = self.mock_mp.solutions.hands.Hands
        self.mock_mp_hands_instance = self.mock_mp_hands_class.return_value
        self.mock_mp_hands_instance.process.return_value = MockMediaPipeResults()

        self.model = MediaPipeLandmarkModel(min_detection_confidence=0.4)
        self.hand_image = np.full((1, 256, 128, 3), 0.5, dtype=np.float32)

    def tearDown(self):
        self.mock_mp_patcher.stop()

    def test_initialization(self):
        self.assertEqual(self.model.min_detection_confidence, 0.4)
        self.assertFalse(self.model.packed_convolution)
        self.assertFalse(self.model.supports_packed_convolution())
        self.mock_mp_hands_class.assert_called_once_with(
            static_image_mode=True,
            max_num_hands=1,
            min_detection_confidence=0.4
        )

    def test_initialization_with_config_manager(self):
        mock_config_manager = MagicMock(spec=ConfigManager)
        mock_config_manager.get_setting.side_effect = lambda key, default=None: {
            'landmark_model.min_detection_confidence': 0.7}.get(key, default)
        model = MediaPipeLandmarkModel(config_manager=mock_config_manager)
        self.assertEqual(model.min_detection_confidence, 0.7)

    def test_predict_no_hand(self):
        confidence, keypoints = self.model.predict(self.hand_image)
        self.assertEqual(confidence.shape, (1,))
        self.assertEqual(confidence[0], 0.0)
        self.assertEqual(keypoints.shape, (63,))
        self.assertFalse(keypoints.any())

    def test_predict_one_hand(self):
        self.mock_mp_hands_instance.process.return_value = MockMediaPipeResults(
            multi_hand_landmarks_data=[make_hand(0.1)], multi_handedness_scores=[0.93])

        confidence, keypoints = self.model.predict(self.hand_image)

        self.assertAlmostEqual(float(confidence[0]), 0.93, places=6)
        self.assertEqual(keypoints.shape, (63,))
        points = keypoints.reshape(-1, 3)
        # Crop pixels: x by width 128, y by height 256, z on the x scale
        np.testing.assert_allclose(points[0], (0.1 * 128, 0.1 * 256, 0.0), rtol=1e-5)
        np.testing.assert_allclose(points[5], (0.2 * 128, 0.3 * 256, -0.05 * 128), rtol=1e-5)

    def test_predict_without_handedness_defaults_confidence(self):
        self.mock_mp_hands_instance.process.return_value = MockMediaPipeResults(
            multi_hand_landmarks_data=[make_hand()])
        confidence, _keypoints = self.model.predict(self.hand_image)
        self.assertEqual(confidence[0], 1.0)

    def test_predict_rescales_crop_to_uint8(self):
        self.model.predict(self.hand_image)
        image = self.mock_mp_hands_instance.process.call_args[0][0]
        self.assertEqual(image.shape, (256, 128, 3))
        self.assertEqual(image.dtype, np.uint8)
        self.assertEqual(int(image[0, 0, 0]), 127)

    def test_close_method(self):
        self.model.close()
        self.mock_mp_hands_instance.close.assert_called_once()


if __name__ == '__main__':
    unittest.main(verbosity=2)
