"""Row -> dict mapping for the profiles table."""
from typing import Any, Dict, Optional

Record = Any  # asyncpg Record or dict-like


def _iso(val: Any) -> Optional[str]:
	"""Convert datetime to ISO string, or None."""
	if val is None:
		return None
	if hasattr(val, "isoformat"):
		return val.isoformat()
	return str(val)


def _opt_int(row: Record, key: str) -> Optional[int]:
	v = row.get(key)
	if v is None:
		return None
	try:
		return int(v)
	except (TypeError, ValueError):
		return None


def profile_row_to_dict(row: Record) -> Dict[str, Any]:
	return {
		"user_id": str(row.get("user_id") or ""),
		"height_cm": _opt_int(row, "height_cm"),
		"shoulder_width_cm": _opt_int(row, "shoulder_width_cm"),
		"size_class": str(row.get("size_class") or ""),
		"created_at": _iso(row.get("created_at")),
		"updated_at": _iso(row.get("updated_at")),
	}
