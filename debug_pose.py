"""
Debug the posture pipeline on a recorded video.

The first N detected frames are used as calibration samples (sit upright at
the start of the clip); every later frame is classified and printed.
"""

import logging
import sys

import cv2

from calibration.calibration_session import CalibrationSession
from features.posture_features import extract_posture_features
from features.screen_angle import extract_screen_angle_signals
from utils.pose_detector import PoseDetector
from utils.posture_analyzer import PostureAnalyzer, has_low_visibility


def debug_posture(video_path, calibration_frames=30, debug_mode=False):
    """Calibrate on the opening frames of a video, then classify the rest."""

    print(f"🔍 DEBUGGING POSTURE: {video_path}")
    print("=" * 60)

    detector = PoseDetector()
    detector.initialize()

    cap = cv2.VideoCapture(video_path)
    fps = cap.get(cv2.CAP_PROP_FPS) or 30.0

    session = CalibrationSession(total_samples=calibration_frames)
    analyzer = None
    frame_count = 0
    bad_frames = 0

    try:
        while cap.isOpened():
            ret, frame = cap.read()
            if not ret:
                break

            timestamp_ms = frame_count * 1000.0 / fps
            frame_count += 1

            snapshot = detector.detect(frame, timestamp_ms)
            if snapshot is None:
                print(f"   ❌ Frame {frame_count}: no pose detected")
                continue

            if analyzer is None:
                if has_low_visibility(snapshot.world_landmarks):
                    continue
                features = extract_posture_features(snapshot.world_landmarks, snapshot.landmarks)
                progress = session.add_sample(features, extract_screen_angle_signals(snapshot.landmarks))
                if progress.complete:
                    result = session.compute_baseline()
                    analyzer = PostureAnalyzer(
                        result.baseline,
                        screen_angle_reference=result.screen_angle_reference,
                        debug_mode=debug_mode,
                    )
                    print(f"\n✅ Calibrated on {result.sample_count} frames (up to frame {frame_count})")
                    for name, value in result.baseline.features.as_dict().items():
                        print(f"   {name}: {value:.4f} (std {getattr(result.sample_std_dev, name):.4f})")
                continue

            status = analyzer.analyze(snapshot)
            if not status.is_good:
                bad_frames += 1
            rules = ", ".join(f"{v.rule.value}({v.severity:.2f})" for v in status.violations) or "good"
            print(f"📹 Frame {frame_count} t={timestamp_ms / 1000.0:.2f}s conf={status.confidence:.2f}: {rules}")
    finally:
        cap.release()
        detector.destroy()

    if analyzer is None:
        print("\n❌ Not enough usable frames to calibrate")
    else:
        print(f"\nBad-posture frames: {bad_frames}/{frame_count}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python debug_pose.py <path_to_video> [calibration_frames]")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO)
    frames = int(sys.argv[2]) if len(sys.argv) > 2 else 30
    debug_posture(sys.argv[1], calibration_frames=frames)
