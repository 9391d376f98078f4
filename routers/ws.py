"""WebSocket endpoint and ConnectionManager. Route: /ws."""
import asyncio
import json
from typing import Any, Dict, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

router = APIRouter(tags=["ws"])


class ConnectionManager:
	def __init__(self) -> None:
		self._clients: Set[WebSocket] = set()
		self._lock = asyncio.Lock()

	@property
	def client_count(self) -> int:
		return len(self._clients)

	async def connect(self, websocket: WebSocket) -> None:
		await websocket.accept()
		async with self._lock:
			self._clients.add(websocket)

	async def disconnect(self, websocket: WebSocket) -> None:
		async with self._lock:
			self._clients.discard(websocket)

	async def broadcast_json(self, message: Dict[str, Any]) -> None:
		payload = json.dumps(message, separators=(",", ":"))
		async with self._lock:
			clients = list(self._clients)
			if not clients:
				return
			results = await asyncio.gather(*(self._send(ws, payload) for ws in clients))
			# Drop clients whose send failed; they are closed already.
			for ws, ok in zip(clients, results):
				if not ok:
					self._clients.discard(ws)

	@staticmethod
	async def _send(ws: WebSocket, payload: str) -> bool:
		try:
			await ws.send_text(payload)
			return True
		except Exception:
			try:
				await ws.close()
			except Exception:
				pass
			return False

	def publish(self, message: Dict[str, Any]) -> None:
		"""
		Fire-and-forget broadcast; safe to call from sync callbacks on the loop.
		"""
		try:
			asyncio.get_running_loop().create_task(self.broadcast_json(message))
		except RuntimeError:
			# No running loop (shutdown); drop the message.
			pass


@router.websocket("/ws")
async def ws_endpoint(websocket: WebSocket):
	manager: ConnectionManager = websocket.app.state.state.manager
	await manager.connect(websocket)
	try:
		session = websocket.app.state.state.session
		await websocket.send_json({"type": "state", "state": session.state.value, "error": session.lifecycle.last_error})
		while True:
			await websocket.receive_text()
	except WebSocketDisconnect:
		pass
	finally:
		await manager.disconnect(websocket)
