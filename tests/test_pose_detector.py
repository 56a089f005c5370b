import os
import sys
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import numpy as np

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from features.pose_types import DetectorInitError, Snapshot
from utils.pose_detector import PoseDetector


def _mp_landmarks(count=33, visibility=0.9):
    points = [SimpleNamespace(x=0.5, y=0.5, z=-0.1, visibility=visibility) for _ in range(count)]
    return SimpleNamespace(landmark=points)


def _pose_solution(results=None, process_error=None):
    pose = MagicMock()
    if process_error is not None:
        pose.process.side_effect = process_error
    else:
        pose.process.return_value = results
    solution = MagicMock()
    solution.Pose.return_value = pose
    return solution, pose


class TestPoseDetector(unittest.TestCase):
    def setUp(self):
        self.frame = np.zeros((48, 64, 3), dtype=np.uint8)

    def test_initialize_failure_raises(self):
        with patch('utils.pose_detector._load_pose_solution', side_effect=ImportError("no mediapipe")):
            detector = PoseDetector()
            with self.assertRaises(DetectorInitError):
                detector.initialize()
            self.assertFalse(detector.is_ready())

    def test_detect_before_initialize(self):
        self.assertIsNone(PoseDetector().detect(self.frame, 0.0))

    def test_detect_returns_snapshot(self):
        results = SimpleNamespace(pose_landmarks=_mp_landmarks(), pose_world_landmarks=_mp_landmarks())
        solution, pose = _pose_solution(results)
        with patch('utils.pose_detector._load_pose_solution', return_value=solution):
            detector = PoseDetector()
            detector.initialize()

        self.assertTrue(detector.is_ready())
        snapshot = detector.detect(self.frame, 1234.0)
        self.assertIsInstance(snapshot, Snapshot)
        self.assertEqual(snapshot.timestamp, 1234.0)
        self.assertEqual((snapshot.frame_width, snapshot.frame_height), (64, 48))
        self.assertEqual(len(snapshot.world_landmarks), 33)
        self.assertAlmostEqual(snapshot.landmarks[0].visibility, 0.9)
        pose.process.assert_called_once()

    def test_no_pose_found(self):
        results = SimpleNamespace(pose_landmarks=None, pose_world_landmarks=None)
        solution, _ = _pose_solution(results)
        with patch('utils.pose_detector._load_pose_solution', return_value=solution):
            detector = PoseDetector()
            detector.initialize()
        self.assertIsNone(detector.detect(self.frame, 0.0))

    def test_inference_error_is_reported_as_no_pose(self):
        solution, _ = _pose_solution(process_error=RuntimeError("graph failed"))
        with patch('utils.pose_detector._load_pose_solution', return_value=solution):
            detector = PoseDetector()
            detector.initialize()
        with self.assertLogs('utils.pose_detector', level='WARNING'):
            self.assertIsNone(detector.detect(self.frame, 0.0))

    def test_partial_landmarks_are_rejected(self):
        results = SimpleNamespace(pose_landmarks=_mp_landmarks(25), pose_world_landmarks=_mp_landmarks())
        solution, _ = _pose_solution(results)
        with patch('utils.pose_detector._load_pose_solution', return_value=solution):
            detector = PoseDetector()
            detector.initialize()
        self.assertIsNone(detector.detect(self.frame, 0.0))

    def test_destroy_closes_model(self):
        solution, pose = _pose_solution()
        with patch('utils.pose_detector._load_pose_solution', return_value=solution):
            detector = PoseDetector()
            detector.initialize()
        detector.destroy()
        pose.close.assert_called_once()
        self.assertFalse(detector.is_ready())
        # second destroy is a no-op
        detector.destroy()


if __name__ == '__main__':
    unittest.main()
