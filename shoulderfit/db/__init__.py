"""
PostgreSQL persistence for user profiles (asyncpg, no ORM).

Public API: init_db, close_db, get_status, upsert_profile, get_profile.
"""
from shoulderfit.db.pool import close_db, get_pool, get_status, init_db
from shoulderfit.db.profiles import get_profile, upsert_profile

__all__ = [
	"close_db",
	"get_pool",
	"get_profile",
	"get_status",
	"init_db",
	"upsert_profile",
]
