"""Overlay video routes. Routes: /video/mjpeg, /video/snapshot.jpg."""
from typing import Callable, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response, StreamingResponse

from app_state import AppState
from deps import get_state
from shoulderfit.overlay import mjpeg_from_latest

router = APIRouter(tags=["video"])

_NO_CACHE = {
	"Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
	"Pragma": "no-cache",
}

JpegSource = Callable[[], Tuple[Optional[bytes], Optional[float]]]


def _jpeg_source(state: AppState) -> JpegSource:
	fn = getattr(state.surface, "get_latest_jpeg", None)
	if fn is None:
		raise HTTPException(status_code=404, detail="The render surface does not produce JPEG frames")
	return fn


@router.get("/video/mjpeg")
async def video_mjpeg(fps: Optional[float] = None, state: AppState = Depends(get_state)):
	"""Live MJPEG stream of the composited overlay."""
	src = _jpeg_source(state)
	max_fps = float(fps) if fps is not None else float(state.cfg.overlay.mjpeg_fps)
	return StreamingResponse(
		mjpeg_from_latest(src, max_fps),
		media_type="multipart/x-mixed-replace; boundary=frame",
		headers={**_NO_CACHE, "Connection": "keep-alive"},
	)


@router.get("/video/snapshot.jpg")
async def video_snapshot(state: AppState = Depends(get_state)):
	"""Return the latest composited JPEG frame."""
	jpeg, _ = _jpeg_source(state)()
	if jpeg is None:
		raise HTTPException(status_code=404, detail="No JPEG frame available yet")
	return Response(content=jpeg, media_type="image/jpeg", headers=_NO_CACHE)
