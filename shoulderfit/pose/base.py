from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from shoulderfit.pose.types import LandmarkFrame


class PoseProvider(ABC):
	"""
	Model adapter interface.

	Implementations take an RGB image (H,W,3 uint8) and a monotonic timestamp in
	milliseconds, and return a LandmarkFrame or None when no pose is detected.
	detect() is called from an executor thread, one call at a time per session.
	"""

	@abstractmethod
	def name(self) -> str: ...

	@abstractmethod
	def detect(self, rgb, timestamp_ms: int) -> Optional[LandmarkFrame]: ...

	@abstractmethod
	def close(self) -> None: ...


def get_pose_provider(cfg=None) -> PoseProvider:
	"""
	Build the configured pose provider. Backends are imported lazily so the
	engine can run (and be tested) without mediapipe installed.
	"""
	from shoulderfit.config import get_config

	cfg = cfg or get_config()
	backend = (cfg.pose.backend or "mediapipe").strip().lower()
	if backend in ("mediapipe_task", "task", "landmarker"):
		from shoulderfit.pose.mediapipe_provider import MediaPipeTaskPoseProvider

		return MediaPipeTaskPoseProvider(
			model_asset_path=cfg.pose.model_asset_path,
			min_detection_confidence=cfg.pose.min_detection_confidence,
			min_tracking_confidence=cfg.pose.min_tracking_confidence,
			min_visibility=cfg.pose.min_visibility,
		)

	from shoulderfit.pose.mediapipe_provider import MediaPipePoseProvider

	return MediaPipePoseProvider(
		model_complexity=cfg.pose.model_complexity,
		min_detection_confidence=cfg.pose.min_detection_confidence,
		min_tracking_confidence=cfg.pose.min_tracking_confidence,
		min_visibility=cfg.pose.min_visibility,
	)
