"""Pydantic request body models."""
from typing import Optional, Union

from pydantic import BaseModel, Field


class MeasureStartPayload(BaseModel):
	"""
	Request body for POST /measure/start.
	height_cm is accepted loosely (number or numeric string) and validated by the session,
	so an out-of-range value gets the same invalid_height answer as a malformed one.
	"""

	height_cm: Optional[Union[int, float, str]] = Field(None, description="Body height in centimetres, 50-272")


class MeasureSavePayload(BaseModel):
	"""Request body for POST /measure/save. Optional; the identity header is used when user_id is empty."""

	user_id: Optional[str] = Field(None, description="Explicit user id (falls back to the identity header)")
