"""User profile rows: one per user, last save wins."""
from datetime import datetime
from typing import Any, Dict, Optional

from shoulderfit.db.helpers import profile_row_to_dict
from shoulderfit.db.pool import get_pool

_PROFILE_COLUMNS = "user_id, height_cm, shoulder_width_cm, size_class, created_at, updated_at"


async def upsert_profile(
	user_id: str,
	height_cm: int,
	shoulder_width_cm: int,
	size_class: str,
	updated_at: datetime,
) -> Dict[str, Any]:
	"""
	Create or update the profile for user_id.
	Raises RuntimeError when persistence is disabled.
	"""
	pool = get_pool()
	if pool is None:
		raise RuntimeError("Database pool not initialized")
	uid = (user_id or "").strip()
	if not uid:
		raise ValueError("user_id is required")
	async with pool.acquire() as conn:
		row = await conn.fetchrow(
			f"""
			INSERT INTO profiles (user_id, height_cm, shoulder_width_cm, size_class, updated_at)
			VALUES ($1, $2, $3, $4, $5)
			ON CONFLICT (user_id) DO UPDATE SET
				height_cm = EXCLUDED.height_cm,
				shoulder_width_cm = EXCLUDED.shoulder_width_cm,
				size_class = EXCLUDED.size_class,
				updated_at = EXCLUDED.updated_at
			RETURNING {_PROFILE_COLUMNS};
			""",
			uid,
			int(height_cm),
			int(shoulder_width_cm),
			str(size_class),
			updated_at,
		)
		return profile_row_to_dict(row)


async def get_profile(user_id: str) -> Optional[Dict[str, Any]]:
	pool = get_pool()
	if pool is None:
		return None
	async with pool.acquire() as conn:
		row = await conn.fetchrow(
			f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE user_id = $1;",
			(user_id or "").strip(),
		)
		return profile_row_to_dict(row) if row else None
