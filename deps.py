"""
FastAPI dependencies. Use Depends(get_state) in route handlers to receive AppState.
"""
from typing import Optional

from fastapi import Request

from app_state import AppState


def get_state(request: Request) -> AppState:
	"""Return the app state instance attached in lifespan."""
	return request.app.state.state


def get_user_id(request: Request) -> Optional[str]:
	"""
	Identity of the caller, taken from the header named by auth.user_header.
	Authentication itself happens upstream (reverse proxy / gateway).
	"""
	state: AppState = request.app.state.state
	header = state.cfg.auth.user_header if state.cfg is not None else "X-User-Id"
	uid = (request.headers.get(header) or "").strip()
	return uid or None
