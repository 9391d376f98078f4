"""Profile routes. Route: /profile."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from deps import get_user_id
from schemas.responses import ProfileOut
from shoulderfit import db

router = APIRouter(tags=["profile"])


@router.get("/profile", response_model=ProfileOut)
async def profile_get(user_id: Optional[str] = Depends(get_user_id)):
	"""Stored profile for the calling user."""
	if not user_id:
		raise HTTPException(status_code=401, detail="Identity header missing")
	if db.get_pool() is None:
		raise HTTPException(status_code=503, detail="Profile persistence is not configured")
	try:
		prof = await db.get_profile(user_id)
	except Exception as e:
		raise HTTPException(status_code=500, detail=f"Failed to load profile: {e!r}")
	if prof is None:
		raise HTTPException(status_code=404, detail="No saved profile")
	return prof
