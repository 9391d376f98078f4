from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from shoulderfit.pose.types import Keypoint


@dataclass
class SmoothedPosition:
	"""Running normalized estimate for one landmark identifier."""

	x: float
	y: float


class KeypointSmoother:
	"""
	First-order exponential smoothing over a fixed set of 2D points.

	- First observation of an identifier is taken as-is (no pull from the origin).
	- Later observations: s = s + alpha * (raw - s), per axis.
	- Frames without a detection simply don't call update(); the last value is
	  held and smoothing resumes from it.

	One instance belongs to one capture session; reset() between sessions.
	"""

	def __init__(self, alpha: float = 0.4) -> None:
		alpha = float(alpha)
		if not (0.0 < alpha <= 1.0):
			raise ValueError(f"alpha must be in (0, 1], got {alpha!r}")
		self.alpha = alpha
		self._positions: Dict[str, SmoothedPosition] = {}

	def update(self, identifier: str, raw: Keypoint) -> SmoothedPosition:
		pos = self._positions.get(identifier)
		if pos is None:
			pos = SmoothedPosition(x=float(raw.x), y=float(raw.y))
			self._positions[identifier] = pos
			return SmoothedPosition(pos.x, pos.y)
		pos.x += self.alpha * (float(raw.x) - pos.x)
		pos.y += self.alpha * (float(raw.y) - pos.y)
		return SmoothedPosition(pos.x, pos.y)

	def get(self, identifier: str) -> Optional[SmoothedPosition]:
		pos = self._positions.get(identifier)
		return SmoothedPosition(pos.x, pos.y) if pos is not None else None

	def positions(self) -> Dict[str, SmoothedPosition]:
		"""Copy of all current estimates; callers can't mutate filter state."""
		return {k: SmoothedPosition(p.x, p.y) for k, p in self._positions.items()}

	def reset(self) -> None:
		self._positions.clear()

	def __len__(self) -> int:
		return len(self._positions)

	def __contains__(self, identifier: object) -> bool:
		return identifier in self._positions
