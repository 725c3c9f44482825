"""Postgres persistence for scraped business records."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

from psycopg2 import extras, pool

from maps_scraper.core.config import get_settings

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None

CREATE_BUSINESSES_TABLE = """
CREATE TABLE IF NOT EXISTS businesses (
    identity TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    rating NUMERIC(2, 1),
    review_count INTEGER,
    address TEXT,
    phone TEXT,
    website TEXT,
    business_type TEXT,
    price_level TEXT,
    hours JSONB,
    email TEXT,
    emails JSONB,
    latitude DOUBLE PRECISION,
    longitude DOUBLE PRECISION,
    source_url TEXT,
    query TEXT,
    raw JSONB,
    scraped_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ DEFAULT NOW()
);
"""


def init_pool(minconn: int = 1, maxconn: int = 5, dsn: Optional[str] = None) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        dsn = dsn or get_settings().database_url
        if not dsn:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=dsn,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


def close_pool() -> None:
    global _connection_pool
    if _connection_pool is not None:
        _connection_pool.closeall()
        _connection_pool = None


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


def ensure_schema() -> None:
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(CREATE_BUSINESSES_TABLE)
        conn.commit()


def _prepare_params(row: Dict[str, Any]) -> Dict[str, Any]:
    coordinates = row.get("coordinates") or {}
    return {
        "identity": row.get("identity"),
        "name": row.get("name"),
        "rating": row.get("rating"),
        "review_count": row.get("review_count"),
        "address": row.get("address") or None,
        "phone": row.get("phone") or None,
        "website": row.get("website") or None,
        "business_type": row.get("business_type") or None,
        "price_level": row.get("price_level") or None,
        "hours": extras.Json(row.get("hours") or []),
        "email": row.get("email"),
        "emails": extras.Json(row.get("emails") or []),
        "latitude": coordinates.get("latitude"),
        "longitude": coordinates.get("longitude"),
        "source_url": row.get("source_url") or None,
        "query": row.get("query"),
        "raw": extras.Json(row),
        "scraped_at": row.get("timestamp"),
    }


_UPSERT_BUSINESS = """
INSERT INTO businesses (
    identity,
    name,
    rating,
    review_count,
    address,
    phone,
    website,
    business_type,
    price_level,
    hours,
    email,
    emails,
    latitude,
    longitude,
    source_url,
    query,
    raw,
    scraped_at,
    updated_at
) VALUES (
    %(identity)s,
    %(name)s,
    %(rating)s,
    %(review_count)s,
    %(address)s,
    %(phone)s,
    %(website)s,
    %(business_type)s,
    %(price_level)s,
    %(hours)s,
    %(email)s,
    %(emails)s,
    %(latitude)s,
    %(longitude)s,
    %(source_url)s,
    %(query)s,
    %(raw)s,
    %(scraped_at)s,
    NOW()
)
ON CONFLICT (identity) DO UPDATE SET
    name = EXCLUDED.name,
    rating = EXCLUDED.rating,
    review_count = EXCLUDED.review_count,
    address = COALESCE(EXCLUDED.address, businesses.address),
    phone = COALESCE(EXCLUDED.phone, businesses.phone),
    website = COALESCE(EXCLUDED.website, businesses.website),
    business_type = COALESCE(EXCLUDED.business_type, businesses.business_type),
    price_level = COALESCE(EXCLUDED.price_level, businesses.price_level),
    hours = EXCLUDED.hours,
    email = COALESCE(EXCLUDED.email, businesses.email),
    emails = EXCLUDED.emails,
    latitude = EXCLUDED.latitude,
    longitude = EXCLUDED.longitude,
    source_url = EXCLUDED.source_url,
    query = COALESCE(EXCLUDED.query, businesses.query),
    raw = EXCLUDED.raw,
    scraped_at = COALESCE(EXCLUDED.scraped_at, businesses.scraped_at),
    updated_at = NOW();
"""


def upsert_business(row: Dict[str, Any]) -> None:
    """Persist a business row, performing an idempotent upsert keyed by identity."""
    params = _prepare_params(row)
    if not params["identity"] or not params["name"]:
        raise ValueError("identity and name are required for upsert")

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(_UPSERT_BUSINESS, params)
        conn.commit()
        logger.debug("Upserted business %s", params["identity"])
