"""Pydantic response models for API docs."""
from typing import Any, Dict, Optional

from pydantic import BaseModel


class ErrorDetail(BaseModel):
	"""Body of the `detail` field on 4xx/5xx measurement responses."""

	reason: str
	message: str
	state: Optional[str] = None


class MeasurementOut(BaseModel):
	pixel_distance: float
	estimated_width_cm: float
	size_class: str


class MeasureStartResponse(BaseModel):
	"""Response from POST /measure/start."""

	detail: str
	state: str


class MeasureStateResponse(BaseModel):
	"""Response from POST /measure/stop and /measure/acknowledge."""

	detail: str
	state: str


class MeasureStatusResponse(BaseModel):
	"""Response from GET /measure/status."""

	state: str
	height_cm: Optional[int] = None
	frames_processed: int = 0
	measurement: Optional[MeasurementOut] = None
	error: Optional[Dict[str, Any]] = None


class ProfileOut(BaseModel):
	user_id: str
	height_cm: Optional[int] = None
	shoulder_width_cm: Optional[int] = None
	size_class: str
	updated_at: Optional[str] = None
	created_at: Optional[str] = None
