"""HTTP entrypoint that queues map search jobs (Cloud Run friendly)."""

from __future__ import annotations

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from flask import Flask, jsonify, request

from maps_scraper.core.config import get_settings
from maps_scraper.jobs.run_search import run_search_job

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & executor ----------
app = Flask(__name__)
_executor = ThreadPoolExecutor(max_workers=2)

# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only, never launches a browser."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "headless": settings.headless,
                "revision": os.getenv("K_REVISION", "unknown"),
                "region": os.getenv("X_GOOGLE_RUNTIMEREGION", "unknown"),
            }
        ),
        200,
    )


def _string_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        return None
    return [item.strip() for item in value if item.strip()]


def _optional_int(payload: Dict[str, Any], field: str) -> Tuple[Optional[int], Optional[str]]:
    raw = payload.get(field)
    if raw is None:
        return None, None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None, f"{field} must be numeric"
    if value <= 0:
        return None, f"{field} must be positive"
    return value, None


@app.post("/scrape")
def enqueue_scrape() -> Any:
    """
    Enqueue a search job.
    Required: queries (list or string) and/or urls (list or string)
    Optional: max_results, max_scrolls (int), locale (str), scrape_details,
    scrape_emails, multi_region (bool), regions (list)
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    queries = _string_list(payload.get("queries"))
    urls = _string_list(payload.get("urls"))
    regions = _string_list(payload.get("regions"))
    if queries is None or urls is None or regions is None:
        return jsonify({"error": "queries, urls and regions must be strings or lists of strings"}), 400
    if not queries and not urls:
        return jsonify({"error": "missing fields: queries or urls"}), 400

    max_results, error = _optional_int(payload, "max_results")
    if error:
        return jsonify({"error": error}), 400
    max_scrolls, error = _optional_int(payload, "max_scrolls")
    if error:
        return jsonify({"error": error}), 400

    job_args = dict(
        queries=queries,
        urls=urls,
        max_results=max_results,
        max_scrolls=max_scrolls,
        locale=str(payload.get("locale") or "en").strip(),
        scrape_details=bool(payload.get("scrape_details", True)),
        scrape_emails=bool(payload.get("scrape_emails", True)),
        multi_region=bool(payload.get("multi_region", False)),
        regions=regions or None,
    )

    logger.info("Queueing search job: %s", job_args)
    _executor.submit(_run_job_safe, job_args)

    return jsonify({"data": {"status": "queued", "searches": len(queries) + len(urls)}}), 202


# ---------- Internals ----------


def _run_job_safe(job_args: Dict[str, Any]) -> None:
    try:
        asyncio.run(run_search_job(**job_args))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Search job failed: %s", exc)


def main() -> None:
    port = get_settings().worker_port
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
