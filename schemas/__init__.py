"""Pydantic request/response models for API validation and docs."""
from schemas.requests import MeasureSavePayload, MeasureStartPayload
from schemas.responses import (
	ErrorDetail,
	MeasurementOut,
	MeasureStartResponse,
	MeasureStateResponse,
	MeasureStatusResponse,
	ProfileOut,
)

__all__ = [
	"ErrorDetail",
	"MeasureSavePayload",
	"MeasureStartPayload",
	"MeasureStartResponse",
	"MeasureStateResponse",
	"MeasureStatusResponse",
	"MeasurementOut",
	"ProfileOut",
]
