"""Measurement routes. Routes: /measure/start, stop, acknowledge, status, save; /debug/status."""
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from app_state import AppState
from deps import get_state, get_user_id
from schemas.requests import MeasureSavePayload, MeasureStartPayload
from schemas.responses import MeasureStartResponse, MeasureStateResponse
from shoulderfit import __version__, db

router = APIRouter(tags=["measure"])

# Outcome reason -> HTTP status. Anything unlisted is a conflict with the current state.
_START_STATUS: Dict[str, int] = {
	"invalid_height": 400,
	"busy": 409,
	"needs_acknowledgement": 409,
	"cancelled": 409,
	"permission_denied": 503,
	"no_device": 503,
	"unsupported": 503,
	"no_frames": 503,
	"model_unavailable": 503,
	"acquire_failed": 503,
}

_SAVE_STATUS: Dict[str, int] = {
	"no_identity": 401,
	"no_measurement": 409,
	"store_error": 502,
}


@router.post("/measure/start", response_model=MeasureStartResponse)
async def measure_start(payload: MeasureStartPayload, state: AppState = Depends(get_state)):
	"""Validate height, acquire the camera and start the live loop."""
	out = await state.session.start(payload.height_cm)
	if not out.ok:
		raise HTTPException(
			status_code=_START_STATUS.get(out.reason or "", 409),
			detail={"reason": out.reason, "message": out.message, "state": out.state.value},
		)
	return {"detail": "Measurement started.", "state": out.state.value}


@router.post("/measure/stop", response_model=MeasureStateResponse)
async def measure_stop(state: AppState = Depends(get_state)):
	st = await state.session.stop()
	return {"detail": "Measurement stopped.", "state": st.value}


@router.post("/measure/acknowledge", response_model=MeasureStateResponse)
async def measure_acknowledge(state: AppState = Depends(get_state)):
	"""Clear a camera/loop error so the next start can retry."""
	st = state.session.acknowledge_error()
	return {"detail": "Error acknowledged.", "state": st.value}


@router.get("/measure/status")
async def measure_status(state: AppState = Depends(get_state)):
	return state.session.status()


@router.post("/measure/save")
async def measure_save(
	payload: Optional[MeasureSavePayload] = None,
	user_id: Optional[str] = Depends(get_user_id),
	state: AppState = Depends(get_state),
):
	"""Upsert the current measurement into the caller's profile."""
	uid = (payload.user_id if payload is not None else None) or user_id
	out = await state.session.save(uid)
	if not out.ok:
		raise HTTPException(
			status_code=_SAVE_STATUS.get(out.reason or "", 409),
			detail={"reason": out.reason, "message": out.message},
		)
	return {"detail": "Profile saved.", "profile": out.profile.to_dict()}


@router.get("/debug/status")
async def debug_status(state: AppState = Depends(get_state)):
	mgr = state.manager
	return {
		"version": __version__,
		"session": state.session.status(),
		"db": db.get_status(),
		"ws_clients": mgr.client_count if mgr is not None else 0,
	}
