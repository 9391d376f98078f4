from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

LEFT_SHOULDER = "left_shoulder"
RIGHT_SHOULDER = "right_shoulder"

# Landmarks the measurement engine tracks across frames.
TRACKED_LANDMARKS: Tuple[str, ...] = (LEFT_SHOULDER, RIGHT_SHOULDER)


@dataclass(frozen=True)
class Keypoint:
	"""
	A single 2D keypoint, normalized to [0, 1] of frame width/height.
	"""

	name: str
	x: float
	y: float
	score: float = 1.0  # visibility [0..1] best-effort


@dataclass(frozen=True)
class LandmarkFrame:
	"""
	Pose output for one processed video frame.

	- Coordinates stay normalized; consumers scale by width/height when they
	  need pixel space.
	- timestamp_ms is the monotonic timestamp handed to the provider.
	"""

	timestamp_ms: int
	width: int
	height: int
	keypoints: Dict[str, Keypoint] = field(default_factory=dict)

	def get(self, name: str) -> Optional[Keypoint]:
		if not self.keypoints:
			return None
		return self.keypoints.get(name)

	def has_all(self, names: Tuple[str, ...] = TRACKED_LANDMARKS) -> bool:
		return all(n in self.keypoints for n in names)
