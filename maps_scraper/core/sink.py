"""Destinations for output rows: JSONL file, ingest API, Postgres or stdout."""

from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, TextIO

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from maps_scraper.core import db
from maps_scraper.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

INGEST_TIMEOUT = 10


class JsonlSink:
    """Append one JSON object per line."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, rows: Sequence[Dict[str, Any]]) -> None:
        with self.path.open("a", encoding="utf-8") as fh:
            for row in rows:
                fh.write(json.dumps(row, ensure_ascii=False, default=str) + "\n")
        logger.info("Wrote %s rows to %s", len(rows), self.path)

    def close(self) -> None:
        pass


class StdoutSink:
    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream or sys.stdout

    def write(self, rows: Sequence[Dict[str, Any]]) -> None:
        for row in rows:
            self.stream.write(json.dumps(row, ensure_ascii=False, default=str) + "\n")
        self.stream.flush()

    def close(self) -> None:
        pass


def build_retrying_session() -> requests.Session:
    """requests.Session that retries connection errors and 5xx responses."""
    session = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=("POST", "GET"),
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


class IngestApiSink:
    """POST ``{"items": [...]}`` batches to an ingest endpoint.

    Payloads that cannot be delivered are written to ``failed_dir`` so that
    ``scripts/replay_failed.py`` can send them later. Delivery failures never
    raise.
    """

    def __init__(
        self,
        url: str,
        failed_dir: str = "data/failed",
        *,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.failed_dir = Path(failed_dir)
        self.session = session or build_retrying_session()

    def write(self, rows: Sequence[Dict[str, Any]]) -> Optional[requests.Response]:
        payload = {"items": list(rows)}
        try:
            response = self.session.post(self.url, json=payload, timeout=INGEST_TIMEOUT)
        except requests.RequestException as exc:
            logger.error("Failed to call ingest API: %s", exc)
            self._save_failed(payload)
            return None

        if not (200 <= response.status_code < 300):
            logger.error(
                "Ingest API returned non-2xx status (%s): %s", response.status_code, response.text[:500]
            )
            self._save_failed({"status": response.status_code, "text": response.text, "payload": payload})
            return response

        logger.info("Delivered %s rows to ingest API", len(rows))
        return response

    def _save_failed(self, body: Dict[str, Any]) -> Optional[Path]:
        try:
            self.failed_dir.mkdir(parents=True, exist_ok=True)
            fname = self.failed_dir.joinpath(f"failed-{time.time_ns()}.json")
            with fname.open("w", encoding="utf-8") as fh:
                json.dump(body, fh, ensure_ascii=False, indent=2, default=str)
        except OSError as exc:
            logger.error("Failed to save failed payload to disk: %s", exc)
            return None
        logger.info("Saved failed payload to %s", fname)
        return fname

    def close(self) -> None:
        self.session.close()


class PostgresSink:
    """Upsert business rows into ``businesses``; error rows are skipped."""

    def __init__(self, dsn: Optional[str] = None, *, create_schema: bool = True) -> None:
        db.init_pool(dsn=dsn)
        if create_schema:
            db.ensure_schema()

    def write(self, rows: Sequence[Dict[str, Any]]) -> None:
        stored = 0
        for row in rows:
            if "error" in row:
                continue
            try:
                db.upsert_business(row)
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to upsert %s: %s", row.get("identity"), exc)
                continue
            stored += 1
        logger.info("Upserted %s of %s rows", stored, len(rows))

    def close(self) -> None:
        db.close_pool()


def build_sinks(
    settings: Optional[Settings] = None,
    *,
    output_path: Optional[str] = None,
    ingest_url: Optional[str] = None,
    database_url: Optional[str] = None,
) -> List[Any]:
    """Sinks for every configured destination, stdout when none is."""
    settings = settings or get_settings()
    output_path = output_path or settings.output_path
    ingest_url = ingest_url or settings.ingest_api_url
    database_url = database_url or settings.database_url

    sinks: List[Any] = []
    if output_path:
        sinks.append(JsonlSink(output_path))
    if ingest_url:
        sinks.append(IngestApiSink(ingest_url, settings.failed_payload_dir))
    if database_url:
        sinks.append(PostgresSink(database_url))
    if not sinks:
        sinks.append(StdoutSink())
    return sinks
