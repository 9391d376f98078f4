"""
Shoulder-width estimate and size class from smoothed shoulder keypoints.

The model is a coarse two-term heuristic, not a calibrated camera projection:

    width_cm = height_cm * k1 + pixel_distance * k2

k1 is an anthropometric proportion, k2 a pixel-to-cm calibration; both are
configuration (see EstimatorConfig).
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple, Union

from shoulderfit.config import EstimatorConfig
from shoulderfit.smoothing import SmoothedPosition


class SizeClass(str, Enum):
	S = "S"
	M = "M"
	L = "L"


class HeightValidationError(ValueError):
	"""User-supplied height is missing, non-numeric, non-integral or out of range."""


@dataclass(frozen=True)
class MeasurementResult:
	pixel_distance: float
	estimated_width_cm: float
	size_class: SizeClass

	def to_dict(self) -> dict:
		return {
			"pixel_distance": round(float(self.pixel_distance), 2),
			"estimated_width_cm": round(float(self.estimated_width_cm), 2),
			"size_class": self.size_class.value,
		}


@dataclass(frozen=True)
class Unavailable:
	"""Explicit "no measurement" value; never a zero-width result."""

	reason: str

	def __bool__(self) -> bool:
		return False


UNAVAILABLE = Unavailable("no_measurement")

Estimate = Union[MeasurementResult, Unavailable]


def validate_height(value: Any, min_cm: int = 50, max_cm: int = 272) -> int:
	"""
	Turn raw user input into a positive integer height in cm.

	Accepts ints, integral floats and numeric strings ("175", " 175 ", "175.0").
	Raises HeightValidationError for anything else.
	"""
	if value is None:
		raise HeightValidationError("height is required")
	if isinstance(value, bool):
		raise HeightValidationError("height must be a number")
	if isinstance(value, str):
		s = value.strip()
		if not s:
			raise HeightValidationError("height is required")
		try:
			num = float(s)
		except ValueError:
			raise HeightValidationError(f"height must be a number, got {value!r}") from None
	elif isinstance(value, (int, float)):
		num = float(value)
	else:
		raise HeightValidationError(f"height must be a number, got {type(value).__name__}")

	if not math.isfinite(num) or num != int(num):
		raise HeightValidationError(f"height must be a whole number of cm, got {value!r}")
	cm = int(num)
	if cm <= 0:
		raise HeightValidationError("height must be positive")
	if cm < int(min_cm) or cm > int(max_cm):
		raise HeightValidationError(f"height must be between {int(min_cm)} and {int(max_cm)} cm")
	return cm


class MeasurementEstimator:
	def __init__(self, cfg: Optional[EstimatorConfig] = None) -> None:
		self.cfg = cfg or EstimatorConfig()

	def classify(self, width_cm: float) -> SizeClass:
		if width_cm > self.cfg.l_above_cm:
			return SizeClass.L
		if width_cm >= self.cfg.m_from_cm:
			return SizeClass.M
		return SizeClass.S

	@staticmethod
	def pixel_distance(left: SmoothedPosition, right: SmoothedPosition, frame_size: Tuple[int, int]) -> float:
		"""Euclidean distance after scaling normalized coords to the frame's pixel grid."""
		w, h = frame_size
		dx = (float(left.x) - float(right.x)) * float(w)
		dy = (float(left.y) - float(right.y)) * float(h)
		return math.hypot(dx, dy)

	def estimate(
		self,
		left: Optional[SmoothedPosition],
		right: Optional[SmoothedPosition],
		height_cm: Any,
		frame_size: Tuple[int, int],
	) -> Estimate:
		if isinstance(height_cm, bool) or not isinstance(height_cm, int) or height_cm <= 0:
			return Unavailable("invalid_height")
		if left is None or right is None:
			return Unavailable("missing_keypoint")
		w, h = frame_size
		if int(w) <= 0 or int(h) <= 0:
			return Unavailable("invalid_frame_size")

		px = self.pixel_distance(left, right, (int(w), int(h)))
		width_cm = float(height_cm) * self.cfg.k1 + px * self.cfg.k2
		return MeasurementResult(
			pixel_distance=px,
			estimated_width_cm=width_cm,
			size_class=self.classify(width_cm),
		)
