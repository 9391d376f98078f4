from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmoothingConfig:
	# Exponential decay factor in (0, 1]. 1.0 disables smoothing.
	alpha: float = 0.4


@dataclass(frozen=True)
class EstimatorConfig:
	# width_cm = height_cm * k1 + pixel_distance * k2
	k1: float = 0.23
	k2: float = 0.01
	# Size class bands: L if width > l_above_cm, M if width >= m_from_cm, else S.
	m_from_cm: float = 40.0
	l_above_cm: float = 45.0
	# Accepted user height range (inclusive).
	min_height_cm: int = 50
	max_height_cm: int = 272


@dataclass(frozen=True)
class CameraConfig:
	backend: str = "opencv"  # opencv / picamera2
	index: int = 0
	width: int = 1280
	height: int = 720
	fps: int = 30


@dataclass(frozen=True)
class CaptureConfig:
	# Loop pacing; advisory, the loop never drops frames to catch up.
	target_fps: float = 30.0
	# Acquiring -> Running requires one frame within this window.
	first_frame_timeout_s: float = 3.0
	# Consecutive failed reads before the loop gives up on the device.
	max_read_failures: int = 30


@dataclass(frozen=True)
class PoseConfig:
	backend: str = "mediapipe"  # mediapipe / mediapipe_task
	model_complexity: int = 1
	min_detection_confidence: float = 0.5
	min_tracking_confidence: float = 0.5
	# Landmarks below this visibility are treated as not detected.
	min_visibility: float = 0.5
	# Only used by the mediapipe_task backend (PoseLandmarker .task file).
	model_asset_path: str = str(Path("models") / "pose_landmarker_lite.task")


@dataclass(frozen=True)
class OverlayConfig:
	# Selfie view: video and overlay are flipped horizontally together.
	mirror: bool = True
	point_radius: int = 10
	jpeg_quality: int = 80
	mjpeg_fps: float = 15.0


@dataclass(frozen=True)
class DatabaseConfig:
	# If empty, profile persistence is disabled (save() reports store_error).
	url: str = ""
	pool_min_size: int = 1
	pool_max_size: int = 5


@dataclass(frozen=True)
class AuthConfig:
	# Request header carrying the authenticated user id (set by the upstream auth proxy).
	user_header: str = "X-User-Id"


@dataclass(frozen=True)
class AppConfig:
	smoothing: SmoothingConfig = field(default_factory=SmoothingConfig)
	estimator: EstimatorConfig = field(default_factory=EstimatorConfig)
	camera: CameraConfig = field(default_factory=CameraConfig)
	capture: CaptureConfig = field(default_factory=CaptureConfig)
	pose: PoseConfig = field(default_factory=PoseConfig)
	overlay: OverlayConfig = field(default_factory=OverlayConfig)
	database: DatabaseConfig = field(default_factory=DatabaseConfig)
	auth: AuthConfig = field(default_factory=AuthConfig)


_CONFIG_PATH: Optional[Path] = None
_CONFIG_CACHE: Optional[AppConfig] = None


def _repo_root() -> Path:
	# shoulderfit/config.py -> repo root is one level up.
	return Path(__file__).resolve().parents[1]


def get_default_config_path() -> Path:
	return _repo_root() / "config.json"


def set_config_path(path: str | Path) -> None:
	"""
	Override the config path (must be called before first get_config()).
	Used by the server CLI (--config).
	"""
	global _CONFIG_PATH
	global _CONFIG_CACHE
	_CONFIG_PATH = Path(path).expanduser().resolve()
	_CONFIG_CACHE = None


def _deep_get(d: Dict[str, Any], keys: list[str], default: Any = None) -> Any:
	cur: Any = d
	for k in keys:
		if not isinstance(cur, dict):
			return default
		cur = cur.get(k)
	return cur if cur is not None else default


def _as_int(v: Any, default: int) -> int:
	try:
		return int(v)
	except (TypeError, ValueError):
		return int(default)


def _as_bool(v: Any, default: bool) -> bool:
	if isinstance(v, bool):
		return v
	if isinstance(v, (int, float)):
		return bool(v)
	if isinstance(v, str):
		return v.strip().lower() in ("1", "true", "yes", "on")
	return bool(default)


def _as_str(v: Any, default: str = "") -> str:
	return str(v) if v is not None else str(default)


def _as_float(v: Any, default: float) -> float:
	try:
		return float(v)
	except (TypeError, ValueError):
		return float(default)


def _parse_raw(raw: Dict[str, Any]) -> AppConfig:
	d = AppConfig()

	alpha = _as_float(_deep_get(raw, ["smoothing", "alpha"], d.smoothing.alpha), d.smoothing.alpha)
	if not (0.0 < alpha <= 1.0):
		logger.warning("[Config] smoothing.alpha=%r outside (0, 1]; using %s", alpha, d.smoothing.alpha)
		alpha = d.smoothing.alpha

	e = d.estimator
	k1 = _as_float(_deep_get(raw, ["estimator", "k1"], e.k1), e.k1)
	k2 = _as_float(_deep_get(raw, ["estimator", "k2"], e.k2), e.k2)
	m_from = _as_float(_deep_get(raw, ["estimator", "m_from_cm"], e.m_from_cm), e.m_from_cm)
	l_above = _as_float(_deep_get(raw, ["estimator", "l_above_cm"], e.l_above_cm), e.l_above_cm)
	if l_above < m_from:
		logger.warning("[Config] estimator.l_above_cm < m_from_cm; using default size bands")
		m_from, l_above = e.m_from_cm, e.l_above_cm
	min_h = _as_int(_deep_get(raw, ["estimator", "min_height_cm"], e.min_height_cm), e.min_height_cm)
	max_h = _as_int(_deep_get(raw, ["estimator", "max_height_cm"], e.max_height_cm), e.max_height_cm)
	if min_h <= 0 or max_h < min_h:
		min_h, max_h = e.min_height_cm, e.max_height_cm

	c = d.camera
	cam_backend = _as_str(_deep_get(raw, ["camera", "backend"], c.backend), c.backend).strip().lower()
	cam_index = _as_int(_deep_get(raw, ["camera", "index"], c.index), c.index)
	cam_w = _as_int(_deep_get(raw, ["camera", "width"], c.width), c.width)
	cam_h = _as_int(_deep_get(raw, ["camera", "height"], c.height), c.height)
	cam_fps = _as_int(_deep_get(raw, ["camera", "fps"], c.fps), c.fps)

	cap = d.capture
	target_fps = _as_float(_deep_get(raw, ["capture", "target_fps"], cap.target_fps), cap.target_fps)
	first_frame = _as_float(
		_deep_get(raw, ["capture", "first_frame_timeout_s"], cap.first_frame_timeout_s), cap.first_frame_timeout_s
	)
	max_fail = _as_int(_deep_get(raw, ["capture", "max_read_failures"], cap.max_read_failures), cap.max_read_failures)

	p = d.pose
	pose_backend = _as_str(_deep_get(raw, ["pose", "backend"], p.backend), p.backend).strip().lower()
	complexity = _as_int(_deep_get(raw, ["pose", "model_complexity"], p.model_complexity), p.model_complexity)
	det_conf = _as_float(
		_deep_get(raw, ["pose", "min_detection_confidence"], p.min_detection_confidence), p.min_detection_confidence
	)
	trk_conf = _as_float(
		_deep_get(raw, ["pose", "min_tracking_confidence"], p.min_tracking_confidence), p.min_tracking_confidence
	)
	min_vis = _as_float(_deep_get(raw, ["pose", "min_visibility"], p.min_visibility), p.min_visibility)
	asset = _as_str(_deep_get(raw, ["pose", "model_asset_path"], p.model_asset_path), p.model_asset_path)

	o = d.overlay
	mirror = _as_bool(_deep_get(raw, ["overlay", "mirror"], o.mirror), o.mirror)
	radius = _as_int(_deep_get(raw, ["overlay", "point_radius"], o.point_radius), o.point_radius)
	quality = _as_int(_deep_get(raw, ["overlay", "jpeg_quality"], o.jpeg_quality), o.jpeg_quality)
	mjpeg_fps = _as_float(_deep_get(raw, ["overlay", "mjpeg_fps"], o.mjpeg_fps), o.mjpeg_fps)

	db = d.database
	db_url = _as_str(_deep_get(raw, ["database", "url"], ""), "")
	pool_min = _as_int(_deep_get(raw, ["database", "pool_min_size"], db.pool_min_size), db.pool_min_size)
	pool_max = _as_int(_deep_get(raw, ["database", "pool_max_size"], db.pool_max_size), db.pool_max_size)

	user_header = _as_str(_deep_get(raw, ["auth", "user_header"], d.auth.user_header), d.auth.user_header).strip()

	return AppConfig(
		smoothing=SmoothingConfig(alpha=float(alpha)),
		estimator=EstimatorConfig(
			k1=float(k1),
			k2=float(k2),
			m_from_cm=float(m_from),
			l_above_cm=float(l_above),
			min_height_cm=int(min_h),
			max_height_cm=int(max_h),
		),
		camera=CameraConfig(
			backend=cam_backend or c.backend,
			# NOTE: index 0 is valid; only negative values fall back.
			index=int(cam_index) if int(cam_index) >= 0 else c.index,
			width=int(cam_w) if int(cam_w) > 0 else c.width,
			height=int(cam_h) if int(cam_h) > 0 else c.height,
			fps=int(cam_fps) if int(cam_fps) > 0 else c.fps,
		),
		capture=CaptureConfig(
			target_fps=float(target_fps) if float(target_fps) > 0.0 else cap.target_fps,
			first_frame_timeout_s=float(first_frame) if float(first_frame) > 0.0 else cap.first_frame_timeout_s,
			max_read_failures=int(max_fail) if int(max_fail) > 0 else cap.max_read_failures,
		),
		pose=PoseConfig(
			backend=pose_backend or p.backend,
			model_complexity=min(2, max(0, int(complexity))),
			min_detection_confidence=float(det_conf),
			min_tracking_confidence=float(trk_conf),
			min_visibility=min(1.0, max(0.0, float(min_vis))),
			model_asset_path=asset or p.model_asset_path,
		),
		overlay=OverlayConfig(
			mirror=bool(mirror),
			point_radius=int(radius) if int(radius) > 0 else o.point_radius,
			jpeg_quality=min(95, max(10, int(quality))),
			mjpeg_fps=float(mjpeg_fps) if float(mjpeg_fps) > 0.0 else o.mjpeg_fps,
		),
		database=DatabaseConfig(
			url=db_url.strip(),
			pool_min_size=max(1, int(pool_min)),
			pool_max_size=max(max(1, int(pool_min)), int(pool_max)),
		),
		auth=AuthConfig(user_header=user_header or d.auth.user_header),
	)


def load_config(path: Optional[str | Path] = None) -> AppConfig:
	p = Path(path).expanduser().resolve() if path else (_CONFIG_PATH or get_default_config_path())
	if not p.exists():
		# Defaults-only config; app can still run.
		return AppConfig()
	try:
		raw = json.loads(p.read_text(encoding="utf-8"))
	except (OSError, ValueError) as e:
		# If config is malformed, fail safe to defaults (but keep app running).
		logger.warning("[Config] failed to read %s: %s; using defaults", p, e)
		return AppConfig()

	if not isinstance(raw, dict):
		return AppConfig()
	return _parse_raw(raw)


def get_config() -> AppConfig:
	global _CONFIG_CACHE
	if _CONFIG_CACHE is None:
		_CONFIG_CACHE = load_config()
	return _CONFIG_CACHE
