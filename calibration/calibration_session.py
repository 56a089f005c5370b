"""
Calibration session: collects posture samples while the user sits well and
reduces them to a baseline.

Single-angle flow: add_sample() repeatedly, then compute_baseline().

Multi-angle flow: for each screen angle call start_angle_collection(angle),
add_sample(features, signals) until progress is complete, then
complete_current_angle(). compute_multi_angle_baseline() takes the first
batch as the reference posture and turns every batch into one screen-angle
reference point.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from features.pose_types import ConfigurationError, OperationError
from features.posture_features import FEATURE_CHANNELS, PostureFeatures
from features.screen_angle import ScreenAngleReference, ScreenAngleSignals

logger = logging.getLogger(__name__)

DEFAULT_TOTAL_SAMPLES = 30

_SIGNAL_COLUMNS = ('face_y', 'nose_chin_ratio', 'eye_mouth_ratio')


@dataclass(frozen=True)
class CalibrationBaseline:
    """Reference posture a user is judged against. Owned and persisted by the host."""
    features: PostureFeatures
    timestamp: float
    screen_angle_references: Tuple[ScreenAngleReference, ...] = ()

    def as_dict(self) -> dict:
        data = self.features.as_dict()
        data['timestamp'] = self.timestamp
        data['screen_angle_references'] = [ref.as_dict() for ref in self.screen_angle_references]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CalibrationBaseline":
        return cls(
            features=PostureFeatures.from_dict(data),
            timestamp=float(data.get('timestamp', 0.0)),
            screen_angle_references=tuple(
                ScreenAngleReference.from_dict(ref) for ref in data.get('screen_angle_references') or []
            ),
        )


@dataclass(frozen=True)
class CalibrationProgress:
    fraction: float
    complete: bool
    sample_count: int
    total_samples: int

    def as_dict(self) -> dict:
        return {
            'fraction': self.fraction,
            'complete': self.complete,
            'sample_count': self.sample_count,
            'total_samples': self.total_samples,
        }


@dataclass(frozen=True)
class CalibrationResult:
    baseline: CalibrationBaseline
    sample_std_dev: PostureFeatures
    sample_count: int
    # mean signals of the batch, when signals were collected
    screen_angle_reference: Optional[ScreenAngleReference] = None


@dataclass(frozen=True)
class AngleBatch:
    angle: float
    samples: Tuple[PostureFeatures, ...]
    signals: Tuple[ScreenAngleSignals, ...] = field(default_factory=tuple)


def _feature_frame(samples: Sequence[PostureFeatures]) -> pd.DataFrame:
    return pd.DataFrame([s.as_dict() for s in samples], columns=list(FEATURE_CHANNELS))


def _mean_features(samples: Sequence[PostureFeatures]) -> PostureFeatures:
    return PostureFeatures.from_dict(_feature_frame(samples).mean().to_dict())


def _std_features(samples: Sequence[PostureFeatures]) -> PostureFeatures:
    # population std-dev; a single sample gives 0
    return PostureFeatures.from_dict(_feature_frame(samples).std(ddof=0).fillna(0.0).to_dict())


def _mean_signals(signals: Sequence[ScreenAngleSignals]) -> ScreenAngleSignals:
    frame = pd.DataFrame([s.as_dict() for s in signals], columns=list(_SIGNAL_COLUMNS))
    return ScreenAngleSignals.from_dict(frame.mean().to_dict())


class CalibrationSession:
    """Accumulates calibration samples; one instance per calibration run."""

    def __init__(self, total_samples: int = DEFAULT_TOTAL_SAMPLES):
        if isinstance(total_samples, bool) or not isinstance(total_samples, int) or total_samples < 1:
            raise ConfigurationError(f"total_samples must be a positive integer, got {total_samples}")
        self.total_samples = total_samples

        self._samples: List[PostureFeatures] = []
        self._signals: List[ScreenAngleSignals] = []
        self._current_angle: Optional[float] = None
        self._batches: List[AngleBatch] = []

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------
    def add_sample(self, features: PostureFeatures,
                   signals: Optional[ScreenAngleSignals] = None) -> CalibrationProgress:
        """
        Record one sample into the open batch.

        Samples beyond total_samples are still accepted; progress stays at 1.

        Raises:
            OperationError: if an angle batch is open and no signals are given.
        """
        if self._current_angle is not None and signals is None:
            raise OperationError("screen-angle signals are required while collecting an angle batch")

        self._samples.append(features)
        if signals is not None:
            self._signals.append(signals)
        return self.get_progress()

    def start_angle_collection(self, angle: float):
        """Open a fresh batch for one screen angle."""
        if self._samples:
            logger.warning("Discarding %d uncommitted calibration samples", len(self._samples))
        self._current_angle = float(angle)
        self._samples = []
        self._signals = []

    def complete_current_angle(self) -> AngleBatch:
        """
        Close the open angle batch.

        Raises:
            OperationError: if no batch is open or it holds no samples.
        """
        if self._current_angle is None:
            raise OperationError("no angle batch is open; call start_angle_collection first")
        if not self._samples:
            raise OperationError(f"angle batch {self._current_angle:g} has no samples")

        batch = AngleBatch(
            angle=self._current_angle,
            samples=tuple(self._samples),
            signals=tuple(self._signals),
        )
        self._batches.append(batch)
        logger.info("Closed calibration batch for angle %g (%d samples)", batch.angle, len(batch.samples))

        self._current_angle = None
        self._samples = []
        self._signals = []
        return batch

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------
    def compute_baseline(self) -> CalibrationResult:
        """
        Reduce the open (or implicit) batch to its per-channel mean.

        Raises:
            OperationError: if no samples were collected.
        """
        if not self._samples:
            raise OperationError("cannot compute baseline: no samples collected")

        reference = None
        if self._signals:
            reference = ScreenAngleReference(
                angle=self._current_angle if self._current_angle is not None else 0.0,
                signals=_mean_signals(self._signals),
            )

        baseline = CalibrationBaseline(
            features=_mean_features(self._samples),
            timestamp=time.time() * 1000.0,
        )
        logger.info("Calibration baseline computed from %d samples", len(self._samples))
        return CalibrationResult(
            baseline=baseline,
            sample_std_dev=_std_features(self._samples),
            sample_count=len(self._samples),
            screen_angle_reference=reference,
        )

    def compute_multi_angle_baseline(self) -> CalibrationResult:
        """
        Baseline from the closed angle batches.

        The first batch is the canonical posture: its mean becomes the
        baseline. Every batch, including the first, yields one averaged
        screen-angle reference, in collection order.

        Raises:
            OperationError: if no batch has been closed.
        """
        if not self._batches:
            raise OperationError("cannot compute multi-angle baseline: no angle batch was completed")

        primary = self._batches[0]
        references = tuple(
            ScreenAngleReference(angle=batch.angle, signals=_mean_signals(batch.signals))
            for batch in self._batches
            if batch.signals
        )

        baseline = CalibrationBaseline(
            features=_mean_features(primary.samples),
            timestamp=time.time() * 1000.0,
            screen_angle_references=references,
        )
        logger.info(
            "Multi-angle baseline computed: %d batches, %d reference samples",
            len(self._batches), len(primary.samples),
        )
        return CalibrationResult(
            baseline=baseline,
            sample_std_dev=_std_features(primary.samples),
            sample_count=len(primary.samples),
            screen_angle_reference=references[0] if references else None,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    def get_progress(self) -> CalibrationProgress:
        count = len(self._samples)
        return CalibrationProgress(
            fraction=min(count / self.total_samples, 1.0),
            complete=count >= self.total_samples,
            sample_count=count,
            total_samples=self.total_samples,
        )

    @property
    def completed_angles(self) -> List[float]:
        return [batch.angle for batch in self._batches]

    @property
    def current_angle(self) -> Optional[float]:
        return self._current_angle

    def reset(self):
        self._samples = []
        self._signals = []
        self._current_angle = None
        self._batches = []
