from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Optional

from shoulderfit.config import AppConfig, get_config


class DeviceErrorReason(str, Enum):
	PERMISSION_DENIED = "permission_denied"
	NO_DEVICE = "no_device"
	UNSUPPORTED = "unsupported"
	# Device opened but never delivered a frame.
	NO_FRAMES = "no_frames"


class CameraAcquisitionError(Exception):
	"""Typed device failure; the lifecycle surfaces `reason` to the caller."""

	def __init__(self, reason: DeviceErrorReason, detail: str = "") -> None:
		self.reason = DeviceErrorReason(reason)
		self.detail = str(detail or "")
		super().__init__(f"{self.reason.value}: {self.detail}" if self.detail else self.reason.value)

	def human_message(self) -> str:
		if self.reason is DeviceErrorReason.PERMISSION_DENIED:
			return "Camera access was denied. Grant camera permission and try again."
		if self.reason is DeviceErrorReason.NO_DEVICE:
			return "No camera was found. Connect a camera and try again."
		if self.reason is DeviceErrorReason.UNSUPPORTED:
			return "Camera capture is not supported in this environment."
		return "The camera did not deliver any frames. Check that it is not in use by another application."


class CameraDevice(ABC):
	"""
	Exclusive handle on one capture device.

	acquire()/read()/release() are blocking and are called from an executor.
	release() must be safe to call at any time, including while a read() is in
	flight on another thread, and more than once.
	"""

	@abstractmethod
	def name(self) -> str: ...

	@abstractmethod
	def acquire(self) -> None:
		"""Open the device. Raises CameraAcquisitionError."""
		...

	@abstractmethod
	def read(self) -> Optional[Any]:
		"""Return one RGB frame (H,W,3 uint8) or None if no frame is available."""
		...

	@abstractmethod
	def release(self) -> None: ...

	@abstractmethod
	def get_status(self) -> Dict[str, Any]: ...


CameraFactory = Callable[[], CameraDevice]


def get_camera_device(cfg: Optional[AppConfig] = None, *, backend_override: Optional[str] = None) -> CameraDevice:
	cfg = cfg or get_config()
	backend = (backend_override or cfg.camera.backend or "opencv").strip().lower()

	if backend in ("picamera2", "pc2"):
		from shoulderfit.camera_devices.picamera2_device import Picamera2Device

		return Picamera2Device(
			camera_index=int(cfg.camera.index),
			size=(int(cfg.camera.width), int(cfg.camera.height)),
			fps=int(cfg.camera.fps),
		)

	# Unknown backends fall back to OpenCV, the only one that works on a plain laptop.
	from shoulderfit.camera_devices.opencv_device import OpenCVCameraDevice

	# NOTE: do not use `or 0`-style defaults here; camera index 0 is valid.
	return OpenCVCameraDevice(
		camera_index=int(cfg.camera.index),
		size=(int(cfg.camera.width), int(cfg.camera.height)),
		fps=int(cfg.camera.fps),
	)


def camera_factory(cfg: Optional[AppConfig] = None) -> CameraFactory:
	"""A fresh device per session; devices are not reused across sessions."""
	cfg = cfg or get_config()
	return lambda: get_camera_device(cfg)
