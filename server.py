"""
FastAPI application for live shoulder measurement.

Run:
  python server.py --config config.json --host 0.0.0.0 --port 8000
or:
  uvicorn server:app
"""
import argparse
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app_state import AppState
from routers import measure, profile, video, ws
from routers.ws import ConnectionManager
from shoulderfit import __version__, db
from shoulderfit.config import AppConfig, get_config, set_config_path
from shoulderfit.lifecycle import CaptureState
from shoulderfit.session import MeasurementSession, build_session

logger = logging.getLogger(__name__)


def _wire_broadcasts(session: MeasurementSession, manager: ConnectionManager) -> None:
	"""Push every processed frame and every state transition to /ws clients."""

	def _on_frame(snapshot: Dict[str, Any]) -> None:
		manager.publish({"type": "measurement", **snapshot})

	def _on_state(old: CaptureState, new: CaptureState) -> None:
		msg: Dict[str, Any] = {"type": "state", "from": old.value, "state": new.value}
		if new is CaptureState.ERRORED:
			msg["error"] = session.lifecycle.last_error
		manager.publish(msg)

	session.add_listener(_on_frame)
	session.add_state_listener(_on_state)


def create_app(cfg: Optional[AppConfig] = None, session: Optional[MeasurementSession] = None) -> FastAPI:
	"""
	Build the app. cfg and session are resolved at startup when omitted, so
	importing this module never touches config.json or the camera.
	"""

	@asynccontextmanager
	async def lifespan(app: FastAPI):
		resolved = cfg or get_config()
		# DB is optional; without it saves report store_error.
		try:
			await db.init_db(resolved)
		except Exception as e:
			logger.warning("[DB] init_db failed: %r", e)

		state = AppState()
		state.cfg = resolved
		state.session = session or build_session(resolved)
		state.manager = ConnectionManager()
		_wire_broadcasts(state.session, state.manager)
		app.state.state = state
		logger.info("[Server] shoulderfit %s ready", __version__)
		try:
			yield
		finally:
			try:
				await state.session.close()
			except Exception:
				logger.exception("[Server] session close failed")
			await db.close_db()

	app = FastAPI(title="shoulderfit", version=__version__, lifespan=lifespan)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=["*"],
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)
	app.include_router(measure.router)
	app.include_router(profile.router)
	app.include_router(video.router)
	app.include_router(ws.router)
	return app


app = create_app()


def main() -> None:
	p = argparse.ArgumentParser(description="Live shoulder measurement server")
	p.add_argument("--config", default=None, help="Path to config.json (default: repo root)")
	p.add_argument("--host", default="127.0.0.1")
	p.add_argument("--port", type=int, default=8000)
	p.add_argument("--debug", action="store_true", help="Enable debug logging")
	args = p.parse_args()

	logging.basicConfig(
		level=logging.DEBUG if args.debug else logging.INFO,
		format="%(asctime)s %(levelname)s:%(name)s:%(message)s",
	)
	if args.config:
		set_config_path(args.config)

	import uvicorn

	uvicorn.run(create_app(), host=args.host, port=int(args.port), log_level="debug" if args.debug else "info")


if __name__ == "__main__":
	main()
