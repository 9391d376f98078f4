"""
Measurement session façade.

Combines smoother, estimator and capture lifecycle behind start/stop,
current_measurement and save. Errors come back as typed outcome values; the
presentation layer decides how to show them.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from shoulderfit.camera_device import CameraAcquisitionError, CameraFactory, camera_factory
from shoulderfit.config import AppConfig, EstimatorConfig, get_config
from shoulderfit.estimator import (
	UNAVAILABLE,
	Estimate,
	HeightValidationError,
	MeasurementEstimator,
	SizeClass,
	validate_height,
)
from shoulderfit.lifecycle import CaptureLifecycle, CaptureState, LifecycleError, PoseUnavailableError
from shoulderfit.overlay import PillowSurface, RenderSurface
from shoulderfit.pose.base import PoseProvider, get_pose_provider
from shoulderfit.smoothing import KeypointSmoother

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserProfile:
	user_id: str
	height_cm: int
	shoulder_width_cm: int
	size_class: SizeClass
	updated_at: datetime

	def to_dict(self) -> Dict[str, Any]:
		return {
			"user_id": self.user_id,
			"height_cm": self.height_cm,
			"shoulder_width_cm": self.shoulder_width_cm,
			"size_class": self.size_class.value,
			"updated_at": self.updated_at.isoformat(),
		}


@dataclass(frozen=True)
class StartOutcome:
	ok: bool
	state: CaptureState
	reason: Optional[str] = None
	message: Optional[str] = None


@dataclass(frozen=True)
class SaveOutcome:
	ok: bool
	reason: Optional[str] = None
	message: Optional[str] = None
	profile: Optional[UserProfile] = None


ProfileStore = Callable[[UserProfile], Awaitable[Any]]
IdentityProvider = Callable[[], Optional[str]]


async def _db_profile_store(profile: UserProfile) -> Dict[str, Any]:
	from shoulderfit import db

	return await db.upsert_profile(
		user_id=profile.user_id,
		height_cm=profile.height_cm,
		shoulder_width_cm=profile.shoulder_width_cm,
		size_class=profile.size_class.value,
		updated_at=profile.updated_at,
	)


def _no_identity() -> Optional[str]:
	return None


class MeasurementSession:
	def __init__(
		self,
		lifecycle: CaptureLifecycle,
		store: Optional[ProfileStore] = None,
		identity: Optional[IdentityProvider] = None,
		estimator_cfg: Optional[EstimatorConfig] = None,
	) -> None:
		self._lifecycle = lifecycle
		self._store: ProfileStore = store or _db_profile_store
		self._identity: IdentityProvider = identity or _no_identity
		self._est_cfg = estimator_cfg or EstimatorConfig()
		self._start_lock = asyncio.Lock()

	@property
	def lifecycle(self) -> CaptureLifecycle:
		return self._lifecycle

	@property
	def state(self) -> CaptureState:
		return self._lifecycle.state

	def add_listener(self, cb: Callable[[Dict[str, Any]], None]) -> None:
		self._lifecycle.add_frame_listener(cb)

	def add_state_listener(self, cb: Callable[[CaptureState, CaptureState], None]) -> None:
		self._lifecycle.add_state_listener(cb)

	async def start(self, height_cm: Any) -> StartOutcome:
		try:
			cm = validate_height(height_cm, self._est_cfg.min_height_cm, self._est_cfg.max_height_cm)
		except HeightValidationError as e:
			logger.info("[Session] start rejected: %s", e)
			return StartOutcome(False, self.state, "invalid_height", str(e))

		# One camera owner: a start that overlaps another start is rejected, not queued.
		if self._start_lock.locked():
			return StartOutcome(False, self.state, "busy", "A measurement is already starting.")
		async with self._start_lock:
			state = self.state
			if state in (CaptureState.ACQUIRING, CaptureState.RUNNING):
				return StartOutcome(False, state, "busy", "A measurement is already running.")
			if state is CaptureState.ERRORED:
				return StartOutcome(
					False, state, "needs_acknowledgement", "Acknowledge the previous camera error before retrying."
				)
			try:
				await self._lifecycle.start(cm)
			except CameraAcquisitionError as e:
				return StartOutcome(False, self.state, e.reason.value, e.human_message())
			except PoseUnavailableError:
				return StartOutcome(False, self.state, "model_unavailable", "The pose model could not be loaded.")
			except LifecycleError as e:
				return StartOutcome(False, self.state, "busy", str(e))
			except Exception:
				return StartOutcome(False, self.state, "acquire_failed", "The camera could not be started.")

			if self.state is not CaptureState.RUNNING:
				return StartOutcome(False, self.state, "cancelled", "Measurement was stopped before the camera started.")
			logger.info("[Session] measurement started (height=%d cm)", cm)
			return StartOutcome(True, self.state)

	async def stop(self) -> CaptureState:
		return await self._lifecycle.stop()

	def acknowledge_error(self) -> CaptureState:
		return self._lifecycle.acknowledge_error()

	def current_measurement(self) -> Estimate:
		latest = self._lifecycle.latest
		return latest if latest is not None else UNAVAILABLE

	def _resolve_identity(self, user_id: Optional[str]) -> Optional[str]:
		uid = (user_id or "").strip()
		if uid:
			return uid
		try:
			uid = (self._identity() or "").strip()
		except Exception as e:
			logger.warning("[Session] identity lookup failed: %s", e)
			return None
		return uid or None

	async def save(self, user_id: Optional[str] = None) -> SaveOutcome:
		"""
		Upsert the latest measurement for the current user.
		Never touches the running capture, whatever the outcome.
		"""
		uid = self._resolve_identity(user_id)
		if not uid:
			return SaveOutcome(False, "no_identity", "Sign in to save your measurements.")

		result = self._lifecycle.latest
		height = self._lifecycle.height_cm
		if result is None or height is None:
			return SaveOutcome(False, "no_measurement", "No measurement yet. Stand in front of the camera first.")

		profile = UserProfile(
			user_id=uid,
			height_cm=int(height),
			shoulder_width_cm=int(round(result.estimated_width_cm)),
			size_class=result.size_class,
			updated_at=datetime.now(timezone.utc),
		)
		try:
			await self._store(profile)
		except Exception as e:
			logger.warning("[Session] profile save failed for user %s: %s", uid, e)
			return SaveOutcome(False, "store_error", "Could not save your profile. Please try again.")
		logger.info("[Session] profile saved for user %s (%s, %d cm)", uid, profile.size_class.value, profile.shoulder_width_cm)
		return SaveOutcome(True, profile=profile)

	def status(self) -> Dict[str, Any]:
		st = self._lifecycle.get_status()
		m = self.current_measurement()
		st["measurement"] = m.to_dict() if m else None
		return st

	async def close(self) -> None:
		await self._lifecycle.close()


def build_session(
	cfg: Optional[AppConfig] = None,
	*,
	cameras: Optional[CameraFactory] = None,
	pose_factory: Optional[Callable[[], PoseProvider]] = None,
	surface: Optional[RenderSurface] = None,
	store: Optional[ProfileStore] = None,
	identity: Optional[IdentityProvider] = None,
) -> MeasurementSession:
	"""Wire a session from config; every collaborator can be overridden."""
	cfg = cfg or get_config()
	lifecycle = CaptureLifecycle(
		camera_factory=cameras or camera_factory(cfg),
		pose_factory=pose_factory or (lambda: get_pose_provider(cfg)),
		smoother=KeypointSmoother(alpha=cfg.smoothing.alpha),
		estimator=MeasurementEstimator(cfg.estimator),
		surface=surface
		or PillowSurface(
			mirror=cfg.overlay.mirror,
			point_radius=cfg.overlay.point_radius,
			jpeg_quality=cfg.overlay.jpeg_quality,
		),
		cfg=cfg.capture,
	)
	return MeasurementSession(lifecycle, store=store, identity=identity, estimator_cfg=cfg.estimator)
