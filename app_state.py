"""
Explicit app state: single source of truth for the runtime objects.
Created in lifespan, attached to app.state.state; injected into routes via Depends(get_state).
"""
from typing import Any, Optional

from shoulderfit.config import AppConfig
from shoulderfit.overlay import RenderSurface
from shoulderfit.session import MeasurementSession


class AppState:
	"""
	Holds the measurement session and its collaborators.
	Populated in server lifespan.
	"""
	cfg: Optional[AppConfig] = None
	session: Optional[MeasurementSession] = None
	# WebSocket fan-out (routers.ws.ConnectionManager)
	manager: Any = None

	@property
	def surface(self) -> Optional[RenderSurface]:
		if self.session is None:
			return None
		return self.session.lifecycle.surface
