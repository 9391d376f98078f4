from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Optional

from shoulderfit.pose.base import PoseProvider
from shoulderfit.pose.types import LEFT_SHOULDER, RIGHT_SHOULDER, Keypoint, LandmarkFrame

logger = logging.getLogger(__name__)

# MediaPipe Pose (BlazePose 33) landmark indices.
_MP_INDEX = {
	LEFT_SHOULDER: 11,
	RIGHT_SHOULDER: 12,
}


def _import_mediapipe():
	try:
		import mediapipe as mp  # type: ignore
	except ImportError as e:
		raise RuntimeError(
			"MediaPipe is not installed. Install pose deps with: pip install 'shoulderfit[pose]'"
		) from e
	return mp


def _to_landmark_frame(landmarks: Any, timestamp_ms: int, w: int, h: int, min_visibility: float) -> Optional[LandmarkFrame]:
	out = LandmarkFrame(timestamp_ms=int(timestamp_ms), width=w, height=h)
	for name, idx in _MP_INDEX.items():
		try:
			p = landmarks[idx]
		except (IndexError, TypeError):
			continue
		score = float(getattr(p, "visibility", 1.0) or 0.0)
		if score < min_visibility:
			continue
		out.keypoints[name] = Keypoint(name=name, x=float(p.x), y=float(p.y), score=score)
	return out if out.keypoints else None


class MediaPipePoseProvider(PoseProvider):
	"""
	MediaPipe Pose graph (mp.solutions.pose) in streaming mode.

	Notes:
	- MediaPipe already reports normalized coordinates; they are passed through.
	- `visibility` is used as score; landmarks under min_visibility are dropped so
	  the engine treats them as a detection gap.
	"""

	def __init__(
		self,
		model_complexity: int = 1,
		min_detection_confidence: float = 0.5,
		min_tracking_confidence: float = 0.5,
		min_visibility: float = 0.5,
	) -> None:
		mp = _import_mediapipe()
		self._min_visibility = float(min_visibility)
		self._lock = threading.Lock()
		self._pose = mp.solutions.pose.Pose(
			static_image_mode=False,
			model_complexity=int(model_complexity),
			enable_segmentation=False,
			smooth_landmarks=True,
			min_detection_confidence=float(min_detection_confidence),
			min_tracking_confidence=float(min_tracking_confidence),
		)

	def name(self) -> str:
		return "mediapipe_pose"

	def detect(self, rgb, timestamp_ms: int) -> Optional[LandmarkFrame]:
		# rgb: HxWx3
		h, w = int(rgb.shape[0]), int(rgb.shape[1])
		with self._lock:
			res = self._pose.process(rgb)
		if not res or not getattr(res, "pose_landmarks", None):
			return None
		return _to_landmark_frame(res.pose_landmarks.landmark, timestamp_ms, w, h, self._min_visibility)

	def close(self) -> None:
		try:
			with self._lock:
				if self._pose:
					self._pose.close()
					self._pose = None
		except Exception as e:
			logger.debug("[Pose] close failed: %s", e)


class MediaPipeTaskPoseProvider(PoseProvider):
	"""
	MediaPipe PoseLandmarker task in VIDEO running mode.

	Requires a .task model asset (e.g. pose_landmarker_lite.task). VIDEO mode
	rejects non-increasing timestamps, so they are bumped when the caller repeats one.
	"""

	def __init__(
		self,
		model_asset_path: str,
		min_detection_confidence: float = 0.5,
		min_tracking_confidence: float = 0.5,
		min_visibility: float = 0.5,
	) -> None:
		mp = _import_mediapipe()
		asset = Path(model_asset_path).expanduser()
		if not asset.exists():
			raise RuntimeError(f"Pose model asset not found: {asset}")

		from mediapipe.tasks import python as mp_tasks  # type: ignore
		from mediapipe.tasks.python import vision  # type: ignore

		self._mp = mp
		self._min_visibility = float(min_visibility)
		self._lock = threading.Lock()
		self._last_ts: int = -1
		options = vision.PoseLandmarkerOptions(
			base_options=mp_tasks.BaseOptions(model_asset_path=str(asset)),
			running_mode=vision.RunningMode.VIDEO,
			num_poses=1,
			min_pose_detection_confidence=float(min_detection_confidence),
			min_tracking_confidence=float(min_tracking_confidence),
		)
		self._landmarker = vision.PoseLandmarker.create_from_options(options)

	def name(self) -> str:
		return "mediapipe_pose_landmarker"

	def detect(self, rgb, timestamp_ms: int) -> Optional[LandmarkFrame]:
		h, w = int(rgb.shape[0]), int(rgb.shape[1])
		image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=rgb)
		with self._lock:
			ts = max(int(timestamp_ms), self._last_ts + 1)
			self._last_ts = ts
			res = self._landmarker.detect_for_video(image, ts)
		poses = getattr(res, "pose_landmarks", None) or []
		if not poses:
			return None
		return _to_landmark_frame(poses[0], ts, w, h, self._min_visibility)

	def close(self) -> None:
		try:
			with self._lock:
				if self._landmarker:
					self._landmarker.close()
					self._landmarker = None
		except Exception as e:
			logger.debug("[Pose] landmarker close failed: %s", e)
