"""CLI job that runs map searches and writes the records to the configured sinks."""

from __future__ import annotations

import argparse
import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from maps_scraper.core.config import Settings, get_settings
from maps_scraper.core.sink import build_sinks
from maps_scraper.models import MAX_RESULTS_LIMIT, MAX_SCROLLS_LIMIT, BusinessRecord, ExtractionConfig
from maps_scraper.scraper.maps import MapsScraper

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 100
DEFAULT_LOCALE = "en"
DEFAULT_MAX_SCROLLS = 50
MULTI_REGION_MIN_RESULTS = 50
OUTPUT_BATCH_SIZE = 50


@dataclass
class RunSummary:
    total_searches: int = 0
    total_results: int = 0
    failed_searches: int = 0
    duration_seconds: float = 0.0

    @property
    def average_results_per_search(self) -> float:
        succeeded = self.total_searches - self.failed_searches
        return round(self.total_results / succeeded, 1) if succeeded else 0.0

    @property
    def success_rate(self) -> float:
        if not self.total_searches:
            return 0.0
        return round(100.0 * (self.total_searches - self.failed_searches) / self.total_searches, 1)

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["average_results_per_search"] = self.average_results_per_search
        payload["success_rate"] = self.success_rate
        return payload


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_extraction_config(
    *,
    query: Optional[str] = None,
    direct_url: Optional[str] = None,
    max_results: Optional[int] = None,
    locale: Optional[str] = None,
    max_scrolls: Optional[int] = None,
    scrape_details: bool = True,
    scrape_emails: bool = True,
) -> ExtractionConfig:
    """Apply defaults and clamp oversized limits before building the search config."""
    max_results = DEFAULT_MAX_RESULTS if max_results is None else int(max_results)
    if max_results > MAX_RESULTS_LIMIT:
        logger.warning("max_results %s is above %s; capping", max_results, MAX_RESULTS_LIMIT)
        max_results = MAX_RESULTS_LIMIT

    max_scrolls = DEFAULT_MAX_SCROLLS if max_scrolls is None else int(max_scrolls)
    if max_scrolls > MAX_SCROLLS_LIMIT:
        logger.warning("max_scrolls %s is above %s; capping", max_scrolls, MAX_SCROLLS_LIMIT)
        max_scrolls = MAX_SCROLLS_LIMIT

    return ExtractionConfig(
        query=(query or "").strip(),
        direct_url=direct_url,
        max_results=max_results,
        locale=locale or DEFAULT_LOCALE,
        max_scrolls=max_scrolls,
        scrape_details=scrape_details,
        scrape_emails=scrape_emails,
    )


def to_output_rows(
    records: Sequence[BusinessRecord],
    *,
    query: Optional[str] = None,
    search_url: Optional[str] = None,
) -> List[Dict[str, Any]]:
    timestamp = _timestamp()
    rows: List[Dict[str, Any]] = []
    for record in records:
        row = record.to_dict()
        if query:
            row["query"] = query
        if search_url:
            row["search_url"] = search_url
        row["timestamp"] = timestamp
        rows.append(row)
    return rows


def error_record(error: str, *, query: Optional[str] = None, search_url: Optional[str] = None) -> Dict[str, Any]:
    row: Dict[str, Any] = {"query": query} if query else {"search_url": search_url}
    row["error"] = error
    row["timestamp"] = _timestamp()
    return row


def write_in_batches(sinks: Sequence[Any], rows: Sequence[Dict[str, Any]], batch_size: int = OUTPUT_BATCH_SIZE) -> None:
    for start in range(0, len(rows), batch_size):
        batch = list(rows[start:start + batch_size])
        for sink in sinks:
            sink.write(batch)


async def run_search_job(
    *,
    queries: Sequence[str] = (),
    urls: Sequence[str] = (),
    max_results: Optional[int] = None,
    locale: Optional[str] = None,
    max_scrolls: Optional[int] = None,
    scrape_details: bool = True,
    scrape_emails: bool = True,
    multi_region: bool = False,
    regions: Optional[Sequence[str]] = None,
    sinks: Optional[Sequence[Any]] = None,
    settings: Optional[Settings] = None,
    scraper: Optional[MapsScraper] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RunSummary:
    settings = settings or get_settings()
    queries = [query.strip() for query in queries if query and query.strip()]
    urls = [url.strip() for url in urls if url and url.strip()]
    if not queries and not urls:
        raise ValueError("Either queries or urls must be provided")

    sinks = list(sinks) if sinks is not None else build_sinks(settings)
    scraper = scraper or MapsScraper(settings)
    summary = RunSummary()
    started = time.monotonic()
    options = dict(
        max_results=max_results,
        locale=locale,
        max_scrolls=max_scrolls,
        scrape_details=scrape_details,
        scrape_emails=scrape_emails,
    )

    jobs = [{"query": query} for query in queries] + [{"search_url": url} for url in urls]

    await scraper.init()
    try:
        for position, job in enumerate(jobs):
            query, search_url = job.get("query"), job.get("search_url")
            summary.total_searches += 1
            try:
                config = build_extraction_config(query=query, direct_url=search_url, **options)
                if query and multi_region and config.max_results > MULTI_REGION_MIN_RESULTS:
                    logger.info("Running multi-region search for %s", query)
                    records = await scraper.search_multiple_regions(config, regions)
                else:
                    records = await scraper.search(config)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Search failed for %s: %s", query or search_url, exc)
                summary.failed_searches += 1
                write_in_batches(sinks, [error_record(str(exc), query=query, search_url=search_url)])
            else:
                rows = to_output_rows(records, query=query, search_url=search_url)
                write_in_batches(sinks, rows)
                summary.total_results += len(rows)
                logger.info("Found %s results for %s (stats=%s)", len(rows), query or search_url, scraper.get_stats().as_dict())

            if position + 1 < len(jobs):
                await sleep(settings.query_delay)
    finally:
        await scraper.close()
        for sink in sinks:
            sink.close()

    summary.duration_seconds = round(time.monotonic() - started, 2)
    logger.info("Summary: %s", summary.as_dict())
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Extract business listings from map searches")
    parser.add_argument("queries", nargs="*", help="Search queries, e.g. \"coffee shops in Taipei\"")
    parser.add_argument("--url", dest="urls", action="append", default=[], help="Direct map search URL (repeatable)")
    parser.add_argument("--max-results", dest="max_results", type=int, help="Maximum results per search (1-200)")
    parser.add_argument("--locale", dest="locale", help="Locale tag such as en, zh-TW or ja")
    parser.add_argument("--max-scrolls", dest="max_scrolls", type=int, help="Maximum scroll attempts (1-100)")
    parser.add_argument("--no-details", dest="scrape_details", action="store_false", help="Skip detail views")
    parser.add_argument("--no-emails", dest="scrape_emails", action="store_false", help="Skip website email harvesting")
    parser.add_argument("--multi-region", dest="multi_region", action="store_true", help="Repeat searches with region qualifiers")
    parser.add_argument("--region", dest="regions", action="append", help="Region qualifier (repeatable)")
    parser.add_argument("--output", dest="output", help="JSONL output path")
    parser.add_argument("--ingest-url", dest="ingest_url", help="Ingest API endpoint")
    parser.add_argument("--database-url", dest="database_url", help="Postgres DSN")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.queries and not args.urls:
        parser.error("at least one query or --url is required")

    settings = get_settings()
    sinks = build_sinks(
        settings,
        output_path=args.output,
        ingest_url=args.ingest_url,
        database_url=args.database_url,
    )

    asyncio.run(
        run_search_job(
            queries=args.queries,
            urls=args.urls,
            max_results=args.max_results,
            locale=args.locale,
            max_scrolls=args.max_scrolls,
            scrape_details=args.scrape_details,
            scrape_emails=args.scrape_emails,
            multi_region=args.multi_region,
            regions=args.regions,
            sinks=sinks,
            settings=settings,
        )
    )


if __name__ == "__main__":
    main()
