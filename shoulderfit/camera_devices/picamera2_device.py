from __future__ import annotations

import logging
import sys
import threading
import time
from typing import Any, Dict, Optional, Tuple

from shoulderfit.camera_device import CameraAcquisitionError, CameraDevice, DeviceErrorReason

logger = logging.getLogger(__name__)


class Picamera2Device(CameraDevice):
	"""
	Picamera2/libcamera capture for Raspberry Pi camera modules.

	Notes:
	- `python3-picamera2` is a system package on Raspberry Pi OS (apt); a venv
	  must be created with --system-site-packages to see it.
	- Single RGB888 stream at the requested size; no encoder/recording.
	"""

	def __init__(self, camera_index: Optional[int] = None, size: Tuple[int, int] = (1280, 720), fps: int = 30) -> None:
		self._lock = threading.Lock()
		self._camera_index: Optional[int] = int(camera_index) if camera_index is not None else None
		self._size = (int(size[0]), int(size[1]))
		self._fps = int(fps)
		self._picam2: Any = None
		self._frames_read: int = 0
		self._t_last_frame: Optional[float] = None
		self._last_error: Optional[str] = None

	def name(self) -> str:
		return "picamera2"

	def acquire(self) -> None:
		try:
			from picamera2 import Picamera2  # type: ignore
		except ImportError as e:
			self._last_error = (
				f"Picamera2 import failed: {e!r}. Python={sys.executable!r}. "
				"Common cause: the venv does not include system site-packages."
			)
			raise CameraAcquisitionError(DeviceErrorReason.UNSUPPORTED, self._last_error) from e

		try:
			infos = Picamera2.global_camera_info()  # type: ignore[attr-defined]
		except Exception:
			infos = None
		if isinstance(infos, list) and len(infos) == 0:
			self._last_error = "no cameras detected (global_camera_info empty)"
			raise CameraAcquisitionError(DeviceErrorReason.NO_DEVICE, self._last_error)
		if self._camera_index is not None and isinstance(infos, list) and self._camera_index >= len(infos):
			self._last_error = f"camera_index={self._camera_index} out of range (found {len(infos)} camera(s))"
			raise CameraAcquisitionError(DeviceErrorReason.NO_DEVICE, self._last_error)

		try:
			if self._camera_index is None:
				picam2 = Picamera2()
			else:
				picam2 = Picamera2(camera_num=int(self._camera_index))
		except PermissionError as e:
			self._last_error = f"Picamera2 init failed: {e!r}"
			raise CameraAcquisitionError(DeviceErrorReason.PERMISSION_DENIED, self._last_error) from e
		except Exception as e:
			# libcamera reports "camera in use" and missing sensors the same way.
			self._last_error = f"Picamera2 init failed: {e!r}"
			raise CameraAcquisitionError(DeviceErrorReason.NO_DEVICE, self._last_error) from e

		try:
			w, h = self._size
			cfg = picam2.create_video_configuration(
				main={"size": (int(w), int(h)), "format": "RGB888"},
				controls={"FrameRate": float(self._fps)},
			)
			picam2.configure(cfg)
			picam2.start()
		except Exception as e:
			self._last_error = f"Picamera2 configure/start failed: {e!r}"
			try:
				picam2.close()
			except Exception:
				pass
			raise CameraAcquisitionError(DeviceErrorReason.NO_DEVICE, self._last_error) from e

		with self._lock:
			self._picam2 = picam2
			self._last_error = None
		logger.info("[Camera] picamera2 camera %s started (%dx%d@%d)", self._camera_index, w, h, self._fps)

	def read(self) -> Optional[Any]:
		with self._lock:
			picam2 = self._picam2
			if picam2 is None:
				return None
			try:
				arr = picam2.capture_array("main")
			except Exception as e:
				self._last_error = f"capture failed: {e!r}"
				return None
			self._frames_read += 1
			self._t_last_frame = time.time()
		# libcamera's RGB888 is BGR-ordered in memory.
		return arr[:, :, 2::-1].copy()

	def release(self) -> None:
		with self._lock:
			picam2 = self._picam2
			self._picam2 = None
			if picam2 is None:
				return
			try:
				picam2.stop()
			except Exception:
				pass
			try:
				picam2.close()
			except Exception as e:
				logger.debug("[Camera] picamera2 close failed: %s", e)
		logger.info("[Camera] picamera2 camera %s released", self._camera_index)

	def get_status(self) -> Dict[str, Any]:
		with self._lock:
			return {
				"backend": self.name(),
				"camera_index": self._camera_index,
				"open": self._picam2 is not None,
				"requested_size": [self._size[0], self._size[1]],
				"fps": self._fps,
				"frames_read": self._frames_read,
				"t_last_frame": self._t_last_frame,
				"error": self._last_error,
			}
