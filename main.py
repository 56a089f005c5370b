import os
import time
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Dict, List, Optional

import cv2
import numpy as np
from fastapi import FastAPI, File, Request, UploadFile
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from calibration.calibration_session import CalibrationResult, CalibrationSession
from features.pose_types import (
    ConfigurationError,
    DetectorInitError,
    OperationError,
    Snapshot,
)
from features.posture_features import extract_posture_features
from features.posture_rules import CustomThresholds, RuleToggles, scale_thresholds
from features.screen_angle import extract_screen_angle_signals
from features.temporal_smoothing import DEFAULT_EMA_ALPHA
from utils.pose_detector import PoseDetector
from utils.posture_analyzer import PostureAnalyzer, has_low_visibility

load_dotenv(os.path.join(os.path.dirname(__file__), ".env"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # releases the MediaPipe solution if one was initialized
    service.detector.destroy()


app = FastAPI(lifespan=lifespan)

# basic logging to console
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={os.getenv(name)!r}")
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={os.getenv(name)!r}")
        return default


# ─── Request models ───────────────────────────────────────────────────────────

class LandmarkModel(BaseModel):
    x: float
    y: float
    z: float = 0.0
    visibility: float = 1.0


class SnapshotModel(BaseModel):
    landmarks: List[LandmarkModel]
    world_landmarks: List[LandmarkModel]
    timestamp: float = Field(..., description="Capture time in milliseconds")
    frame_width: int = 0
    frame_height: int = 0

    def to_snapshot(self) -> Snapshot:
        return Snapshot.build(
            landmarks=[lm.model_dump() for lm in self.landmarks],
            world_landmarks=[lm.model_dump() for lm in self.world_landmarks],
            timestamp=self.timestamp,
            frame_width=self.frame_width,
            frame_height=self.frame_height,
        )


class CustomThresholdsModel(BaseModel):
    forward_head: Optional[float] = None
    head_tilt: Optional[float] = None
    too_close: Optional[float] = None
    shoulder_asymmetry: Optional[float] = None


class SettingsModel(BaseModel):
    sensitivity: Optional[float] = Field(None, description="0 (lenient) to 1 (strict)")
    rule_toggles: Optional[Dict[str, bool]] = None
    custom_thresholds: Optional[CustomThresholdsModel] = None
    debug_mode: Optional[bool] = None


# ─── Session state ────────────────────────────────────────────────────────────

class PostureService:
    """One calibration session plus the analyzer built from its baseline."""

    def __init__(self):
        self.sensitivity = _env_float("POSTURE_SENSITIVITY", 0.5)
        self.ema_alpha = _env_float("POSTURE_EMA_ALPHA", DEFAULT_EMA_ALPHA)
        self.debug_mode = os.getenv("DEBUG_MODE", "False").lower() == "true"
        self.rule_toggles = RuleToggles()
        self.custom_thresholds: Optional[CustomThresholds] = None

        self.calibration = CalibrationSession(total_samples=_env_int("POSTURE_CALIBRATION_SAMPLES", 30))
        self.analyzer: Optional[PostureAnalyzer] = None
        self.detector = PoseDetector()

    def install(self, result: CalibrationResult):
        if self.analyzer is None:
            self.analyzer = PostureAnalyzer(
                result.baseline,
                sensitivity=self.sensitivity,
                rule_toggles=self.rule_toggles,
                screen_angle_reference=result.screen_angle_reference,
                custom_thresholds=self.custom_thresholds,
                ema_alpha=self.ema_alpha,
                debug_mode=self.debug_mode,
            )
        else:
            self.analyzer.update_calibration(result.baseline)
            self.analyzer.update_screen_angle_reference(result.screen_angle_reference)

    def require_analyzer(self) -> PostureAnalyzer:
        if self.analyzer is None:
            raise OperationError("no calibration baseline installed; finish calibration first")
        return self.analyzer

    def apply_settings(self, settings: SettingsModel):
        toggles = self.rule_toggles
        for name, enabled in (settings.rule_toggles or {}).items():
            toggles = toggles.with_rule(name, enabled)

        sensitivity = self.sensitivity if settings.sensitivity is None else settings.sensitivity
        custom = self.custom_thresholds
        if settings.custom_thresholds is not None:
            custom = CustomThresholds(**settings.custom_thresholds.model_dump())
        # fail fast on non-positive overrides
        scale_thresholds(sensitivity, custom)

        self.rule_toggles = toggles
        self.sensitivity = sensitivity
        self.custom_thresholds = custom
        if settings.debug_mode is not None:
            self.debug_mode = settings.debug_mode

        if self.analyzer is not None:
            self.analyzer.update_rule_toggles(self.rule_toggles)
            self.analyzer.update_sensitivity(self.sensitivity)
            self.analyzer.update_custom_thresholds(self.custom_thresholds)
            self.analyzer.set_debug_mode(self.debug_mode)

    def settings(self) -> Dict:
        return {
            "sensitivity": self.sensitivity,
            "rule_toggles": self.rule_toggles.as_dict(),
            "custom_thresholds": asdict(self.custom_thresholds) if self.custom_thresholds else None,
            "debug_mode": self.debug_mode,
        }


service = PostureService()


# ─── Error mapping ────────────────────────────────────────────────────────────

@app.exception_handler(OperationError)
async def operation_error_handler(request: Request, exc: OperationError):
    return JSONResponse(status_code=409, content={"status": "error", "detail": str(exc)})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=422, content={"status": "error", "detail": str(exc)})


@app.exception_handler(DetectorInitError)
async def detector_error_handler(request: Request, exc: DetectorInitError):
    logger.error(f"Pose detector unavailable: {exc}")
    return JSONResponse(status_code=503, content={"status": "error", "detail": "pose detector unavailable"})


# ─── Calibration ──────────────────────────────────────────────────────────────

@app.post("/calibration/samples")
async def add_calibration_sample(body: SnapshotModel):
    snapshot = body.to_snapshot()
    if has_low_visibility(snapshot.world_landmarks):
        # tracking loss is not a calibration sample
        return {"status": "skipped", "progress": service.calibration.get_progress().as_dict()}

    features = extract_posture_features(snapshot.world_landmarks, snapshot.landmarks)
    signals = extract_screen_angle_signals(snapshot.landmarks)
    progress = service.calibration.add_sample(features, signals)
    return {"status": "success", "progress": progress.as_dict()}


@app.post("/calibration/angles/complete")
async def complete_calibration_angle():
    batch = service.calibration.complete_current_angle()
    return {
        "status": "success",
        "angle": batch.angle,
        "sample_count": len(batch.samples),
        "completed_angles": service.calibration.completed_angles,
    }


@app.post("/calibration/angles/{angle}")
async def start_calibration_angle(angle: float):
    service.calibration.start_angle_collection(angle)
    return {"status": "success", "angle": service.calibration.current_angle}


@app.post("/calibration/baseline")
async def finalize_calibration(multi_angle: bool = False):
    if multi_angle:
        result = service.calibration.compute_multi_angle_baseline()
    else:
        result = service.calibration.compute_baseline()
    service.install(result)
    return {
        "status": "success",
        "baseline": result.baseline.as_dict(),
        "sample_std_dev": result.sample_std_dev.as_dict(),
        "sample_count": result.sample_count,
    }


@app.post("/calibration/reset")
async def reset_calibration():
    service.calibration.reset()
    return {"status": "success", "progress": service.calibration.get_progress().as_dict()}


# ─── Analysis ─────────────────────────────────────────────────────────────────

@app.post("/analyze")
async def analyze_snapshot(body: SnapshotModel, detailed: bool = False):
    analyzer = service.require_analyzer()
    snapshot = body.to_snapshot()
    try:
        if detailed:
            return {"status": "success", "result": analyzer.analyze_detailed(snapshot).as_dict()}
        return {"status": "success", "result": analyzer.analyze(snapshot).as_dict()}
    except Exception:
        logger.exception("Analysis failed")
        return JSONResponse(status_code=500, content={"status": "error", "detail": "internal server error"})


@app.post("/analyze/frame")
async def analyze_frame(file: UploadFile = File(...), timestamp_ms: Optional[float] = None, detailed: bool = False):
    analyzer = service.require_analyzer()
    if not service.detector.is_ready():
        service.detector.initialize()

    data = np.frombuffer(await file.read(), dtype=np.uint8)
    frame = cv2.imdecode(data, cv2.IMREAD_COLOR)
    if frame is None:
        return JSONResponse(status_code=400, content={"status": "error", "detail": "could not decode image"})

    if timestamp_ms is None:
        timestamp_ms = time.time() * 1000.0
    snapshot = service.detector.detect(frame, timestamp_ms)
    if snapshot is None:
        return {"status": "no_pose", "result": None}

    try:
        if detailed:
            return {"status": "success", "result": analyzer.analyze_detailed(snapshot).as_dict()}
        return {"status": "success", "result": analyzer.analyze(snapshot).as_dict()}
    except Exception:
        logger.exception("Frame analysis failed")
        return JSONResponse(status_code=500, content={"status": "error", "detail": "internal server error"})


@app.put("/settings")
async def update_settings(body: SettingsModel):
    service.apply_settings(body)
    return {"status": "success", "settings": service.settings()}


@app.post("/reset")
async def reset_analyzer():
    service.require_analyzer().reset()
    return {"status": "success"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
