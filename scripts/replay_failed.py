"""Re-send ingest payloads that were saved to disk after a failed POST."""

import argparse
import json
import logging
import time
from pathlib import Path

from maps_scraper.core.config import get_settings
from maps_scraper.core.sink import build_retrying_session

logger = logging.getLogger(__name__)


def replay(folder: Path, url: str) -> int:
    if not folder.is_dir():
        logger.info("No failed folder: %s", folder)
        return 0

    session = build_retrying_session()
    replayed = 0
    for path in sorted(folder.glob("failed-*.json")):
        try:
            with path.open("r", encoding="utf-8") as fh:
                body = json.load(fh)
            # Non-2xx dumps wrap the original payload.
            payload = body.get("payload", body)
            response = session.post(url, json=payload, timeout=10)
            response.raise_for_status()
            logger.info("Replayed %s => %s", path.name, response.status_code)
            path.unlink()
            replayed += 1
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to replay %s: %s", path.name, exc)
            time.sleep(1)
    return replayed


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Replay failed ingest payloads")
    parser.add_argument("--folder", default=settings.failed_payload_dir)
    parser.add_argument("--url", default=settings.ingest_api_url)
    args = parser.parse_args()
    if not args.url:
        parser.error("--url or INGEST_API_URL is required")
    replay(Path(args.folder), args.url)


if __name__ == "__main__":
    main()
