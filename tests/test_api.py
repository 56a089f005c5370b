import os
import sys
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
import main
from calibration.calibration_session import CalibrationSession
from features.pose_types import DetectorInitError
from landmark_fixtures import (
    forward_head_snapshot,
    low_visibility_snapshot,
    neutral_snapshot,
    snapshot_payload,
)


class TestPostureAPI(unittest.TestCase):
    def setUp(self):
        main.service = main.PostureService()
        main.service.calibration = CalibrationSession(total_samples=3)
        self.client = TestClient(main.app)

    def _calibrate(self):
        for i in range(3):
            response = self.client.post("/calibration/samples", json=snapshot_payload(neutral_snapshot(i * 33.0)))
            self.assertEqual(response.status_code, 200)
        response = self.client.post("/calibration/baseline")
        self.assertEqual(response.status_code, 200)
        return response.json()

    def test_calibration_progress(self):
        response = self.client.post("/calibration/samples", json=snapshot_payload(neutral_snapshot()))
        body = response.json()
        self.assertEqual(body["status"], "success")
        self.assertAlmostEqual(body["progress"]["fraction"], 1 / 3)
        self.assertFalse(body["progress"]["complete"])

    def test_low_visibility_sample_is_skipped(self):
        response = self.client.post("/calibration/samples", json=snapshot_payload(low_visibility_snapshot()))
        self.assertEqual(response.json()["status"], "skipped")
        self.assertEqual(response.json()["progress"]["sample_count"], 0)

    def test_baseline_without_samples_is_conflict(self):
        response = self.client.post("/calibration/baseline")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["status"], "error")

    def test_analyze_requires_calibration(self):
        response = self.client.post("/analyze", json=snapshot_payload(neutral_snapshot()))
        self.assertEqual(response.status_code, 409)

    def test_calibrate_then_analyze(self):
        body = self._calibrate()
        self.assertEqual(body["sample_count"], 3)
        self.assertAlmostEqual(body["baseline"]["head_forward_angle"], 0.0)

        response = self.client.post("/analyze", json=snapshot_payload(neutral_snapshot(200.0)))
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["result"]["is_good"])

        for i in range(5):
            response = self.client.post("/analyze", json=snapshot_payload(forward_head_snapshot(300.0 + i * 33.0)))
        result = response.json()["result"]
        self.assertFalse(result["is_good"])
        self.assertEqual(result["violations"][0]["rule"], "FORWARD_HEAD")

    def test_detailed_analysis(self):
        self._calibrate()
        response = self.client.post("/analyze?detailed=true", json=snapshot_payload(neutral_snapshot(100.0)))
        result = response.json()["result"]
        self.assertIn("deviations", result)
        self.assertTrue(result["status"]["is_good"])

    def test_multi_angle_calibration(self):
        for angle in (90, 110, 130):
            self.assertEqual(self.client.post(f"/calibration/angles/{angle}").status_code, 200)
            for i in range(3):
                self.client.post("/calibration/samples", json=snapshot_payload(neutral_snapshot(i * 33.0)))
            response = self.client.post("/calibration/angles/complete")
            self.assertEqual(response.json()["angle"], float(angle))

        response = self.client.post("/calibration/baseline?multi_angle=true")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["baseline"]["screen_angle_references"]), 3)
        self.assertEqual(len(main.service.analyzer.screen_angle_references), 3)

    def test_complete_without_open_batch_is_conflict(self):
        self.assertEqual(self.client.post("/calibration/angles/complete").status_code, 409)

    def test_bad_snapshot_is_rejected(self):
        payload = snapshot_payload(neutral_snapshot())
        payload["landmarks"] = payload["landmarks"][:10]
        self.assertEqual(self.client.post("/calibration/samples", json=payload).status_code, 422)

    def test_settings(self):
        self._calibrate()
        response = self.client.put("/settings", json={
            "sensitivity": 0.9,
            "rule_toggles": {"slouch": True},
            "custom_thresholds": {"head_tilt": 20.0},
        })
        self.assertEqual(response.status_code, 200)
        settings = response.json()["settings"]
        self.assertTrue(settings["rule_toggles"]["slouch"])
        self.assertEqual(main.service.analyzer.sensitivity, 0.9)
        self.assertEqual(main.service.analyzer.custom_thresholds.head_tilt, 20.0)

    def test_invalid_settings(self):
        self.assertEqual(self.client.put("/settings", json={"rule_toggles": {"elbows": True}}).status_code, 422)
        response = self.client.put("/settings", json={"custom_thresholds": {"head_tilt": 0.0}})
        self.assertEqual(response.status_code, 422)
        self.assertIsNone(main.service.custom_thresholds)

    def test_reset(self):
        self.assertEqual(self.client.post("/reset").status_code, 409)
        self._calibrate()
        self.assertEqual(self.client.post("/reset").status_code, 200)
        self.assertEqual(self.client.post("/calibration/reset").json()["progress"]["sample_count"], 0)

    def test_frame_endpoint_without_detector(self):
        self._calibrate()
        with patch.object(main.service.detector, 'initialize', side_effect=DetectorInitError("missing")):
            response = self.client.post("/analyze/frame", files={"file": ("frame.jpg", b"not-an-image", "image/jpeg")})
        self.assertEqual(response.status_code, 503)

    def test_shutdown_destroys_detector(self):
        with patch.object(main.service.detector, 'destroy') as destroy:
            with TestClient(main.app) as client:
                self.assertEqual(client.post("/reset").status_code, 409)
                destroy.assert_not_called()
            destroy.assert_called_once_with()


if __name__ == '__main__':
    unittest.main()
