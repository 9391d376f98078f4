"""Connection pool, init_db, get_status and close_db for the db package."""
import asyncio
import logging
from typing import Any, Dict, Optional

import asyncpg

from shoulderfit.config import AppConfig, get_config

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None
_last_init_error: Optional[str] = None
_init_lock = asyncio.Lock()
_warned_no_dsn: bool = False


def get_pool() -> Optional[asyncpg.Pool]:
	"""Return the connection pool (None if not initialized)."""
	return _pool


async def init_db(cfg: Optional[AppConfig] = None) -> None:
	"""
	Initialise the PostgreSQL connection pool and ensure tables exist.
	If database.url is not set in config.json, this becomes a no-op and
	profile saves report store_error.
	"""
	global _pool, _warned_no_dsn, _last_init_error
	cfg = cfg or get_config()
	dsn = (cfg.database.url or "").strip()
	if not dsn:
		if not _warned_no_dsn:
			logger.warning("[DB] database.url not set in config.json; profile persistence disabled.")
			_warned_no_dsn = True
		_last_init_error = "database.url not set"
		return

	async with _init_lock:
		if _pool is None:
			try:
				min_size = max(1, int(cfg.database.pool_min_size))
				_pool = await asyncpg.create_pool(
					dsn,
					min_size=min_size,
					max_size=max(min_size, int(cfg.database.pool_max_size)),
				)
				_last_init_error = None
			except Exception as e:
				_last_init_error = repr(e)
				raise

	async with _pool.acquire() as conn:
		await _create_tables(conn)
	logger.info("[DB] pool ready")


async def _create_tables(conn: asyncpg.Connection) -> None:
	await conn.execute(
		"""
		CREATE TABLE IF NOT EXISTS profiles (
			user_id           TEXT PRIMARY KEY,
			height_cm         INTEGER NOT NULL,
			shoulder_width_cm INTEGER NOT NULL,
			size_class        TEXT NOT NULL CHECK (size_class IN ('S', 'M', 'L')),
			created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
			updated_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
		);
		"""
	)
	await conn.execute(
		"""
		CREATE OR REPLACE FUNCTION update_profiles_updated_at()
		RETURNS TRIGGER AS $$ BEGIN NEW.updated_at = GREATEST(NEW.updated_at, NOW()); RETURN NEW; END;
		$$ LANGUAGE plpgsql;
		"""
	)
	await conn.execute(
		"""
		DROP TRIGGER IF EXISTS profiles_updated_at_trigger ON profiles;
		CREATE TRIGGER profiles_updated_at_trigger BEFORE UPDATE ON profiles
		FOR EACH ROW EXECUTE FUNCTION update_profiles_updated_at();
		"""
	)


def get_status() -> Dict[str, Any]:
	"""Return lightweight DB status for diagnostics."""
	dsn = (get_config().database.url or "").strip()
	return {
		"enabled": bool(dsn),
		"pool_ready": _pool is not None,
		"last_init_error": _last_init_error,
	}


async def close_db() -> None:
	"""Close the connection pool on shutdown."""
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None
		logger.info("[DB] pool closed")
