"""Fakes for the camera, pose model, render surface and profile store."""
import asyncio
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import pytest

from shoulderfit.camera_device import CameraDevice
from shoulderfit.config import AppConfig, CaptureConfig
from shoulderfit.estimator import MeasurementEstimator
from shoulderfit.lifecycle import CaptureLifecycle
from shoulderfit.overlay import RenderSurface
from shoulderfit.pose.base import PoseProvider
from shoulderfit.pose.types import LEFT_SHOULDER, RIGHT_SHOULDER, Keypoint, LandmarkFrame
from shoulderfit.smoothing import KeypointSmoother

FAST_CAPTURE = CaptureConfig(target_fps=200.0, first_frame_timeout_s=0.5, max_read_failures=3)


class FakeCamera(CameraDevice):
	"""
	In-memory device. Tracks how many instances hold the device at once
	through the shared `registry` dict.
	"""

	def __init__(
		self,
		registry: Dict[str, int],
		sizes: Optional[List[Tuple[int, int]]] = None,
		acquire_error: Optional[Exception] = None,
		frames_before_loss: Optional[int] = None,
		acquire_gate: Optional[threading.Event] = None,
		deliver_frames: bool = True,
		release_gate: Optional[threading.Event] = None,
	) -> None:
		self.registry = registry
		self.sizes = list(sizes or [(640, 360)])
		self.acquire_error = acquire_error
		self.frames_before_loss = frames_before_loss
		self.acquire_gate = acquire_gate
		self.acquire_entered = threading.Event()
		self.deliver_frames = deliver_frames
		self.release_gate = release_gate
		self.release_entered = threading.Event()
		self.open = False
		self.reads = 0
		self.release_calls = 0
		self._lock = threading.Lock()

	def name(self) -> str:
		return "fake"

	def acquire(self) -> None:
		self.acquire_entered.set()
		if self.acquire_gate is not None:
			self.acquire_gate.wait(5.0)
		if self.acquire_error is not None:
			raise self.acquire_error
		with self._lock:
			self.open = True
			self.registry["active"] = self.registry.get("active", 0) + 1
			self.registry["max_active"] = max(self.registry.get("max_active", 0), self.registry["active"])

	def read(self) -> Optional[Any]:
		with self._lock:
			if not self.open or not self.deliver_frames:
				return None
			if self.frames_before_loss is not None and self.reads >= self.frames_before_loss:
				return None
			w, h = self.sizes[min(self.reads, len(self.sizes) - 1)]
			self.reads += 1
		return np.zeros((h, w, 3), dtype=np.uint8)

	def release(self) -> None:
		self.release_entered.set()
		if self.release_gate is not None:
			self.release_gate.wait(5.0)
		with self._lock:
			self.release_calls += 1
			if self.open:
				self.open = False
				self.registry["active"] -= 1

	def get_status(self) -> Dict[str, Any]:
		return {"backend": "fake", "open": self.open, "reads": self.reads}


class CameraRig:
	"""Camera factory that records every device it hands out."""

	def __init__(self, **camera_kwargs: Any) -> None:
		self.registry: Dict[str, int] = {"active": 0, "max_active": 0}
		self.camera_kwargs = camera_kwargs
		self.cameras: List[FakeCamera] = []

	def __call__(self) -> FakeCamera:
		cam = FakeCamera(self.registry, **self.camera_kwargs)
		self.cameras.append(cam)
		return cam

	@property
	def last(self) -> FakeCamera:
		return self.cameras[-1]


def shoulders(left: Tuple[float, float] = (0.44, 0.3), right: Tuple[float, float] = (0.56, 0.3)) -> Dict[str, Keypoint]:
	return {
		LEFT_SHOULDER: Keypoint(LEFT_SHOULDER, left[0], left[1], 0.9),
		RIGHT_SHOULDER: Keypoint(RIGHT_SHOULDER, right[0], right[1], 0.9),
	}


class FakePose(PoseProvider):
	"""
	Scripted pose model. `script(call_index)` returns the keypoints for that
	call, or None for "no person". With block_on_call=n the n-th call waits on
	`gate` after setting `entered`.
	"""

	def __init__(
		self,
		script: Optional[Callable[[int], Optional[Dict[str, Keypoint]]]] = None,
		block_on_call: Optional[int] = None,
	) -> None:
		self.script = script or (lambda i: shoulders())
		self.block_on_call = block_on_call
		self.entered = threading.Event()
		self.gate = threading.Event()
		self.calls = 0
		self.timestamps: List[int] = []
		self.closed = False

	def name(self) -> str:
		return "fake"

	def detect(self, rgb, timestamp_ms: int) -> Optional[LandmarkFrame]:
		self.calls += 1
		self.timestamps.append(int(timestamp_ms))
		if self.block_on_call is not None and self.calls == self.block_on_call:
			self.entered.set()
			self.gate.wait(5.0)
		kps = self.script(self.calls)
		if kps is None:
			return None
		h, w = rgb.shape[0], rgb.shape[1]
		return LandmarkFrame(timestamp_ms=int(timestamp_ms), width=w, height=h, keypoints=dict(kps))

	def close(self) -> None:
		self.closed = True


class FakeSurface(RenderSurface):
	"""Records resize/draw calls in order; draw() on a mismatched size fails the test."""

	def __init__(self) -> None:
		self._size = (0, 0)
		self.events: List[Tuple[str, Any]] = []
		self.draws: List[Dict[str, Any]] = []
		self.clears = 0

	@property
	def size(self) -> Tuple[int, int]:
		return self._size

	def resize(self, width: int, height: int) -> None:
		self._size = (int(width), int(height))
		self.events.append(("resize", self._size))

	def draw(self, frame, points, result) -> None:
		frame_size = (frame.shape[1], frame.shape[0])
		assert frame_size == self._size, f"draw on {self._size} surface with {frame_size} frame"
		self.events.append(("draw", frame_size))
		self.draws.append({"size": frame_size, "points": dict(points), "result": result})

	def clear(self) -> None:
		self.clears += 1


class FakeStore:
	def __init__(self, error: Optional[Exception] = None) -> None:
		self.error = error
		self.saved: List[Any] = []

	async def __call__(self, profile) -> Dict[str, Any]:
		if self.error is not None:
			raise self.error
		self.saved.append(profile)
		return profile.to_dict()


def make_lifecycle(
	cameras: Callable[[], CameraDevice],
	pose: Optional[PoseProvider] = None,
	surface: Optional[RenderSurface] = None,
	cfg: CaptureConfig = FAST_CAPTURE,
	alpha: float = 0.4,
) -> CaptureLifecycle:
	pose = pose or FakePose()
	return CaptureLifecycle(
		camera_factory=cameras,
		pose_factory=lambda: pose,
		smoother=KeypointSmoother(alpha=alpha),
		estimator=MeasurementEstimator(),
		surface=surface or FakeSurface(),
		cfg=cfg,
	)


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
	deadline = time.monotonic() + timeout
	while not predicate():
		if time.monotonic() > deadline:
			raise AssertionError("condition not met in time")
		await asyncio.sleep(0.005)


@pytest.fixture
def fast_config() -> AppConfig:
	return AppConfig(capture=FAST_CAPTURE)
