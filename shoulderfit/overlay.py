from __future__ import annotations

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from io import BytesIO
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Tuple

from PIL import Image, ImageDraw, ImageFont, ImageOps

from shoulderfit.estimator import MeasurementResult
from shoulderfit.pose.types import LEFT_SHOULDER, RIGHT_SHOULDER
from shoulderfit.smoothing import SmoothedPosition

POINT_COLOR = (0, 255, 0, 255)
GUIDE_COLOR = (255, 255, 0, 220)
TEXT_COLOR = (255, 255, 255, 255)
TEXT_BG = (0, 0, 0, 160)


class RenderSurface(ABC):
	"""
	2D drawing surface matched to the video's native resolution.

	The lifecycle resizes the surface before drawing whenever the frame size
	changes; draw() on a mismatched surface is a programming error.
	"""

	@property
	@abstractmethod
	def size(self) -> Tuple[int, int]: ...

	@abstractmethod
	def resize(self, width: int, height: int) -> None: ...

	@abstractmethod
	def draw(
		self,
		frame: Any,
		points: Mapping[str, SmoothedPosition],
		result: Optional[MeasurementResult],
	) -> None: ...

	def clear(self) -> None:
		"""Drop any retained output (called on session teardown)."""
		return None


class PillowSurface(RenderSurface):
	"""
	RGBA overlay canvas composited over the camera frame.

	- mirror=True flips the frame and the overlay together (selfie view), so
	  annotated points stay on top of the shoulders they belong to.
	- The latest composited frame is kept as JPEG for /video/mjpeg.
	"""

	def __init__(self, mirror: bool = True, point_radius: int = 10, jpeg_quality: int = 80) -> None:
		self._lock = threading.Lock()
		self.mirror = bool(mirror)
		self.point_radius = int(point_radius)
		self.jpeg_quality = int(jpeg_quality)
		self._size: Tuple[int, int] = (0, 0)
		self._canvas: Optional[Image.Image] = None
		self._latest_jpeg: Optional[bytes] = None
		self._latest_t_host: Optional[float] = None
		self._font = ImageFont.load_default()

	@property
	def size(self) -> Tuple[int, int]:
		return self._size

	def resize(self, width: int, height: int) -> None:
		w, h = int(width), int(height)
		if w <= 0 or h <= 0:
			raise ValueError(f"invalid surface size {w}x{h}")
		self._size = (w, h)
		self._canvas = Image.new("RGBA", (w, h), (0, 0, 0, 0))

	def _to_px(self, p: SmoothedPosition) -> Tuple[float, float]:
		w, h = self._size
		x = (1.0 - float(p.x)) if self.mirror else float(p.x)
		return x * w, float(p.y) * h

	def draw(
		self,
		frame: Any,
		points: Mapping[str, SmoothedPosition],
		result: Optional[MeasurementResult],
	) -> None:
		base = Image.fromarray(frame).convert("RGB")
		if base.size != self._size or self._canvas is None:
			raise ValueError(f"surface is {self._size}, frame is {base.size}; resize first")

		canvas = self._canvas
		d = ImageDraw.Draw(canvas)
		d.rectangle((0, 0, canvas.width, canvas.height), fill=(0, 0, 0, 0))

		r = self.point_radius
		px: Dict[str, Tuple[float, float]] = {k: self._to_px(p) for k, p in points.items()}
		if LEFT_SHOULDER in px and RIGHT_SHOULDER in px:
			d.line([px[LEFT_SHOULDER], px[RIGHT_SHOULDER]], fill=GUIDE_COLOR, width=max(2, r // 3))
		for x, y in px.values():
			d.ellipse((x - r, y - r, x + r, y + r), fill=POINT_COLOR)

		if result is not None:
			text = f"Shoulder: {result.estimated_width_cm:.1f} cm  Size: {result.size_class.value}"
			box = d.textbbox((12, 12), text, font=self._font)
			d.rectangle((box[0] - 6, box[1] - 6, box[2] + 6, box[3] + 6), fill=TEXT_BG)
			d.text((12, 12), text, fill=TEXT_COLOR, font=self._font)

		if self.mirror:
			base = ImageOps.mirror(base)
		out = Image.alpha_composite(base.convert("RGBA"), canvas).convert("RGB")
		buf = BytesIO()
		out.save(buf, format="JPEG", quality=self.jpeg_quality)
		with self._lock:
			self._latest_jpeg = buf.getvalue()
			self._latest_t_host = time.time()

	def clear(self) -> None:
		with self._lock:
			self._latest_jpeg = None
			self._latest_t_host = None

	def get_latest_jpeg(self) -> Tuple[Optional[bytes], Optional[float]]:
		with self._lock:
			return self._latest_jpeg, self._latest_t_host


async def mjpeg_from_latest(get_latest_jpeg_fn, fps: float) -> AsyncIterator[bytes]:
	"""
	MJPEG generator over a get_latest_jpeg() callable.
	Yields full multipart chunks including boundary and headers.
	"""
	boundary = b"frame"
	last_t = None
	last_sent_mono = 0.0
	try:
		max_fps = float(fps)
	except (TypeError, ValueError):
		max_fps = 15.0
	if not (max_fps > 0.0):
		max_fps = 15.0
	min_interval = 1.0 / max_fps

	while True:
		jpeg, t = get_latest_jpeg_fn()
		if jpeg is None or t is None:
			await asyncio.sleep(0.05)
			continue
		if last_t is not None and t == last_t:
			await asyncio.sleep(0.01)
			continue
		now_mono = time.monotonic()
		elapsed = now_mono - last_sent_mono
		if elapsed < min_interval:
			await asyncio.sleep(min_interval - elapsed)
			continue
		last_t = t
		last_sent_mono = time.monotonic()
		yield b"--" + boundary + b"\r\n"
		yield b"Content-Type: image/jpeg\r\n"
		yield b"Content-Length: " + str(len(jpeg)).encode("ascii") + b"\r\n\r\n"
		yield jpeg + b"\r\n"
