from __future__ import annotations

import logging
import os
import sys
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from shoulderfit.camera_device import CameraAcquisitionError, CameraDevice, DeviceErrorReason

logger = logging.getLogger(__name__)


class OpenCVCameraDevice(CameraDevice):
	"""
	Webcam capture through cv2.VideoCapture.

	Notes:
	- OpenCV only reports "could not open"; on Linux the V4L2 node is inspected
	  first so permission problems and missing hardware can be told apart.
	- Frames are converted BGR -> RGB before leaving the device.
	"""

	def __init__(self, camera_index: int = 0, size: Tuple[int, int] = (1280, 720), fps: int = 30) -> None:
		self._lock = threading.Lock()
		self._camera_index = int(camera_index)
		self._size = (int(size[0]), int(size[1]))
		self._fps = int(fps)
		self._cv2: Any = None
		self._cap: Any = None
		self._frames_read: int = 0
		self._t_last_frame: Optional[float] = None
		self._last_error: Optional[str] = None

	def name(self) -> str:
		return "opencv"

	def _check_device_node(self) -> None:
		if not sys.platform.startswith("linux"):
			return
		node = Path(f"/dev/video{self._camera_index}")
		if not node.exists():
			raise CameraAcquisitionError(DeviceErrorReason.NO_DEVICE, f"{node} does not exist")
		if not os.access(node, os.R_OK | os.W_OK):
			raise CameraAcquisitionError(
				DeviceErrorReason.PERMISSION_DENIED,
				f"no read/write access to {node} (add the user to the 'video' group)",
			)

	def acquire(self) -> None:
		try:
			import cv2  # type: ignore
		except ImportError as e:
			self._last_error = f"cv2 import failed: {e!r}"
			raise CameraAcquisitionError(DeviceErrorReason.UNSUPPORTED, "opencv-python is not installed") from e

		try:
			self._check_device_node()
		except CameraAcquisitionError as e:
			self._last_error = str(e)
			raise

		cap = cv2.VideoCapture(self._camera_index)
		if cap is None or not cap.isOpened():
			try:
				if cap is not None:
					cap.release()
			except Exception:
				pass
			self._last_error = f"failed to open camera {self._camera_index}"
			raise CameraAcquisitionError(DeviceErrorReason.NO_DEVICE, self._last_error)

		w, h = self._size
		cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
		cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
		cap.set(cv2.CAP_PROP_FPS, self._fps)

		with self._lock:
			self._cv2 = cv2
			self._cap = cap
			self._last_error = None
		logger.info("[Camera] opencv camera %d opened (requested %dx%d@%d)", self._camera_index, w, h, self._fps)

	def read(self) -> Optional[Any]:
		with self._lock:
			cap = self._cap
			if cap is None:
				return None
			ok, bgr = cap.read()
			if not ok or bgr is None:
				return None
			self._frames_read += 1
			self._t_last_frame = time.time()
			return self._cv2.cvtColor(bgr, self._cv2.COLOR_BGR2RGB)

	def release(self) -> None:
		# Blocks until any in-flight read() on the executor thread returns.
		with self._lock:
			cap = self._cap
			self._cap = None
			if cap is None:
				return
			try:
				cap.release()
			except Exception as e:
				logger.debug("[Camera] release failed: %s", e)
		logger.info("[Camera] opencv camera %d released", self._camera_index)

	def get_status(self) -> Dict[str, Any]:
		with self._lock:
			return {
				"backend": self.name(),
				"camera_index": self._camera_index,
				"open": self._cap is not None,
				"requested_size": [self._size[0], self._size[1]],
				"fps": self._fps,
				"frames_read": self._frames_read,
				"t_last_frame": self._t_last_frame,
				"error": self._last_error,
			}
