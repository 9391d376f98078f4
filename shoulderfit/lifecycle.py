"""
Capture/render lifecycle: camera acquisition, the per-frame
detect -> smooth -> estimate -> draw loop, and teardown.

States:

    IDLE -> ACQUIRING -> RUNNING -> STOPPED
               |            |
               +-> ERRORED <+      (acknowledge_error() -> IDLE)

All work runs on one asyncio loop. Blocking device reads and inference go
through run_in_executor and are awaited one at a time, so two frames are never
in flight together. A CancelToken is the only thing that decides whether the
loop continues; it is checked at the top of every iteration and after every
suspension point.
"""
from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from shoulderfit.camera_device import CameraAcquisitionError, CameraDevice, CameraFactory, DeviceErrorReason
from shoulderfit.config import CaptureConfig
from shoulderfit.estimator import HeightValidationError, MeasurementEstimator, MeasurementResult
from shoulderfit.overlay import RenderSurface
from shoulderfit.pose.base import PoseProvider
from shoulderfit.pose.types import LEFT_SHOULDER, RIGHT_SHOULDER, TRACKED_LANDMARKS
from shoulderfit.smoothing import KeypointSmoother

logger = logging.getLogger(__name__)


class CaptureState(str, Enum):
	IDLE = "idle"
	ACQUIRING = "acquiring"
	RUNNING = "running"
	STOPPED = "stopped"
	ERRORED = "errored"


class LifecycleError(RuntimeError):
	"""start() called while capture is active or an error is unacknowledged."""


class PoseUnavailableError(RuntimeError):
	"""The pose model could not be initialised."""


class CameraReadError(RuntimeError):
	"""The device stopped delivering frames while running."""


class CancelToken:
	__slots__ = ("_cancelled",)

	def __init__(self) -> None:
		self._cancelled = False

	@property
	def cancelled(self) -> bool:
		return self._cancelled

	def cancel(self) -> None:
		self._cancelled = True


FrameListener = Callable[[Dict[str, Any]], None]
StateListener = Callable[[CaptureState, CaptureState], None]


class CaptureLifecycle:
	def __init__(
		self,
		camera_factory: CameraFactory,
		pose_factory: Callable[[], PoseProvider],
		smoother: KeypointSmoother,
		estimator: MeasurementEstimator,
		surface: RenderSurface,
		cfg: Optional[CaptureConfig] = None,
	) -> None:
		self._camera_factory = camera_factory
		self._pose_factory = pose_factory
		self._pose: Optional[PoseProvider] = None
		self._smoother = smoother
		self._estimator = estimator
		self._surface = surface
		self._cfg = cfg or CaptureConfig()

		self._state = CaptureState.IDLE
		self._token: Optional[CancelToken] = None
		self._task: Optional[asyncio.Task] = None
		self._camera: Optional[CameraDevice] = None

		self._height_cm: Optional[int] = None
		self._latest: Optional[MeasurementResult] = None
		self._last_error: Optional[Dict[str, str]] = None
		self._frames_processed: int = 0
		self._detections: int = 0
		self._read_failures_total: int = 0
		self._last_ts_ms: int = -1
		self._t_started: Optional[float] = None

		self._frame_listeners: List[FrameListener] = []
		self._state_listeners: List[StateListener] = []

	# ---- read-only views ----

	@property
	def state(self) -> CaptureState:
		return self._state

	@property
	def latest(self) -> Optional[MeasurementResult]:
		return self._latest

	@property
	def height_cm(self) -> Optional[int]:
		return self._height_cm

	@property
	def last_error(self) -> Optional[Dict[str, str]]:
		return dict(self._last_error) if self._last_error else None

	@property
	def frames_processed(self) -> int:
		return self._frames_processed

	@property
	def surface(self) -> RenderSurface:
		return self._surface

	def add_frame_listener(self, cb: FrameListener) -> None:
		self._frame_listeners.append(cb)

	def add_state_listener(self, cb: StateListener) -> None:
		self._state_listeners.append(cb)

	def get_status(self) -> Dict[str, Any]:
		cam = self._camera
		return {
			"state": self._state.value,
			"height_cm": self._height_cm,
			"frames_processed": self._frames_processed,
			"detections": self._detections,
			"read_failures": self._read_failures_total,
			"surface_size": list(self._surface.size),
			"target_fps": float(self._cfg.target_fps),
			"uptime_s": (time.monotonic() - self._t_started) if self._t_started and self._state is CaptureState.RUNNING else None,
			"pose_backend": self._pose.name() if self._pose else None,
			"camera": cam.get_status() if cam is not None else None,
			"error": self.last_error,
		}

	# ---- transitions ----

	def _set_state(self, new: CaptureState) -> None:
		old = self._state
		if old is new:
			return
		self._state = new
		logger.info("[Capture] %s -> %s", old.value, new.value)
		for cb in list(self._state_listeners):
			try:
				cb(old, new)
			except Exception:
				logger.exception("[Capture] state listener failed")

	def _discard_session_state(self) -> None:
		self._smoother.reset()
		self._latest = None
		self._surface.clear()

	async def _ensure_pose(self) -> PoseProvider:
		if self._pose is None:
			loop = asyncio.get_running_loop()
			try:
				self._pose = await loop.run_in_executor(None, self._pose_factory)
			except Exception as e:
				raise PoseUnavailableError(str(e)) from e
			logger.info("[Pose] provider ready: %s", self._pose.name())
		return self._pose

	async def _release(self, camera: Optional[CameraDevice]) -> None:
		if camera is None:
			return
		loop = asyncio.get_running_loop()
		try:
			await loop.run_in_executor(None, camera.release)
		except Exception as e:
			logger.warning("[Capture] camera release failed: %s", e)
		if self._camera is camera:
			self._camera = None

	async def start(self, height_cm: int) -> None:
		"""
		IDLE/STOPPED -> ACQUIRING -> RUNNING.

		Raises HeightValidationError (nothing acquired), LifecycleError (busy or
		unacknowledged error), CameraAcquisitionError / PoseUnavailableError
		(state is ERRORED). Any other device failure is re-raised as is, with
		state ERRORED and reason acquire_failed. Returns normally in STOPPED if
		stop() won the race.
		"""
		if isinstance(height_cm, bool) or not isinstance(height_cm, int) or height_cm <= 0:
			raise HeightValidationError("height_cm must be a validated positive integer")
		if self._state in (CaptureState.ACQUIRING, CaptureState.RUNNING):
			raise LifecycleError("capture is already active")
		if self._state is CaptureState.ERRORED:
			raise LifecycleError("acknowledge the previous error before restarting")

		# Fresh session: no smoothing or measurement carried over.
		self._discard_session_state()
		self._height_cm = int(height_cm)
		self._last_error = None
		self._frames_processed = 0
		self._detections = 0
		self._read_failures_total = 0
		token = CancelToken()
		self._token = token
		self._set_state(CaptureState.ACQUIRING)

		camera: Optional[CameraDevice] = None
		try:
			await self._ensure_pose()
			if token.cancelled:
				return
			camera = self._camera_factory()
			self._camera = camera
			loop = asyncio.get_running_loop()
			await loop.run_in_executor(None, camera.acquire)
			first = await self._wait_first_frame(token, camera)
		except (CameraAcquisitionError, PoseUnavailableError) as e:
			await self._release(camera)
			if token.cancelled:
				return
			if isinstance(e, CameraAcquisitionError):
				self._last_error = {"reason": e.reason.value, "message": e.human_message(), "detail": e.detail}
				logger.warning("[Capture] camera acquisition failed: %s", e)
			else:
				self._last_error = {"reason": "model_unavailable", "message": "The pose model could not be loaded.", "detail": str(e)}
				logger.error("[Capture] pose provider unavailable: %s", e)
			self._height_cm = None
			self._set_state(CaptureState.ERRORED)
			raise
		except Exception as e:
			# Driver errors outside the typed reasons (cv2.error, OSError, ...).
			await self._release(camera)
			if token.cancelled:
				return
			logger.exception("[Capture] camera start failed")
			self._last_error = {"reason": "acquire_failed", "message": "The camera could not be started.", "detail": str(e)}
			self._height_cm = None
			self._set_state(CaptureState.ERRORED)
			raise

		if token.cancelled:
			# stop() ran while we were acquiring; acquire() may have finished after its release.
			await self._release(camera)
			return

		self._t_started = time.monotonic()
		self._set_state(CaptureState.RUNNING)
		self._task = asyncio.create_task(self._run_loop(token, camera, first), name="capture-loop")

	async def _wait_first_frame(self, token: CancelToken, camera: CameraDevice) -> Optional[Any]:
		loop = asyncio.get_running_loop()
		deadline = time.monotonic() + float(self._cfg.first_frame_timeout_s)
		while time.monotonic() < deadline:
			if token.cancelled:
				return None
			frame = await loop.run_in_executor(None, camera.read)
			if frame is not None:
				return frame
			await asyncio.sleep(0.02)
		raise CameraAcquisitionError(
			DeviceErrorReason.NO_FRAMES,
			f"no frame within {float(self._cfg.first_frame_timeout_s):.1f}s",
		)

	async def stop(self) -> CaptureState:
		"""
		RUNNING/ACQUIRING -> STOPPED. Idempotent.

		Order matters: the token flips before anything else, then the loop task
		is cancelled and awaited, then the device is released. After this
		returns no frame step runs for the old session, and a loop that failed
		concurrently does not move the state to ERRORED. If the loop had already
		failed, the state stays ERRORED and is returned.
		"""
		token = self._token
		if token is not None:
			token.cancel()
		if self._state not in (CaptureState.ACQUIRING, CaptureState.RUNNING):
			return self._state

		task = self._task
		self._task = None
		if task is not None and not task.done():
			task.cancel()
			try:
				await task
			except asyncio.CancelledError:
				pass
			except Exception:
				logger.exception("[Capture] loop task raised during stop")

		await self._release(self._camera)
		self._discard_session_state()
		self._t_started = None
		self._set_state(CaptureState.STOPPED)
		return self._state

	def acknowledge_error(self) -> CaptureState:
		"""ERRORED -> IDLE so start() can be retried."""
		if self._state is CaptureState.ERRORED:
			self._last_error = None
			self._set_state(CaptureState.IDLE)
		return self._state

	async def close(self) -> None:
		"""Application shutdown: stop capture and free the pose model."""
		await self.stop()
		if self._pose is not None:
			pose = self._pose
			self._pose = None
			pose.close()

	# ---- per-frame loop ----

	def _next_timestamp_ms(self) -> int:
		ts = int(time.monotonic() * 1000.0)
		if ts <= self._last_ts_ms:
			ts = self._last_ts_ms + 1
		self._last_ts_ms = ts
		return ts

	async def _run_loop(self, token: CancelToken, camera: CameraDevice, first_frame: Any) -> None:
		loop = asyncio.get_running_loop()
		min_interval = 1.0 / max(1.0, float(self._cfg.target_fps))
		failures = 0
		frame = first_frame
		try:
			while True:
				if token.cancelled:
					break
				t0 = time.monotonic()
				if frame is None:
					frame = await loop.run_in_executor(None, camera.read)
					if token.cancelled:
						break
				if frame is None:
					failures += 1
					self._read_failures_total += 1
					if failures >= int(self._cfg.max_read_failures):
						raise CameraReadError(f"{failures} consecutive failed reads")
				else:
					failures = 0
					await self._process_frame(token, frame)
				frame = None
				if token.cancelled:
					break
				delay = min_interval - (time.monotonic() - t0)
				await asyncio.sleep(delay if delay > 0.0 else 0.0)
		except asyncio.CancelledError:
			raise
		except Exception as e:
			if token.cancelled:
				return
			if isinstance(e, CameraReadError):
				logger.warning("[Capture] device lost: %s", e)
				reason, message = "device_lost", "The camera stopped delivering frames."
			else:
				logger.exception("[Capture] frame loop failed")
				reason, message = "loop_error", "Measurement stopped because of an internal error."
			self._task = None
			await self._release(camera)
			if token.cancelled:
				# stop() began while the device was being released; it owns the transition.
				return
			token.cancel()
			self._discard_session_state()
			self._height_cm = None
			self._last_error = {"reason": reason, "message": message, "detail": str(e)}
			self._set_state(CaptureState.ERRORED)

	async def _process_frame(self, token: CancelToken, frame: Any) -> None:
		h, w = int(frame.shape[0]), int(frame.shape[1])
		# Surface must match the native frame size before anything is drawn.
		if tuple(self._surface.size) != (w, h):
			self._surface.resize(w, h)
			logger.debug("[Capture] surface resized to %dx%d", w, h)

		ts = self._next_timestamp_ms()
		loop = asyncio.get_running_loop()
		landmarks = await loop.run_in_executor(None, self._pose.detect, frame, ts)
		if token.cancelled:
			return

		detected = landmarks is not None
		if landmarks is not None:
			self._detections += 1
			for name in TRACKED_LANDMARKS:
				kp = landmarks.get(name)
				if kp is not None:
					self._smoother.update(name, kp)
			if landmarks.has_all():
				est = self._estimator.estimate(
					self._smoother.get(LEFT_SHOULDER),
					self._smoother.get(RIGHT_SHOULDER),
					self._height_cm,
					(w, h),
				)
				if isinstance(est, MeasurementResult):
					self._latest = est

		self._frames_processed += 1
		points = self._smoother.positions()
		self._surface.draw(frame, points, self._latest)

		snapshot = {
			"frame": self._frames_processed,
			"timestamp_ms": ts,
			"detected": detected,
			"points": {k: {"x": round(p.x, 5), "y": round(p.y, 5)} for k, p in points.items()},
			"measurement": self._latest.to_dict() if self._latest else None,
		}
		for cb in list(self._frame_listeners):
			try:
				cb(snapshot)
			except Exception:
				logger.exception("[Capture] frame listener failed")
