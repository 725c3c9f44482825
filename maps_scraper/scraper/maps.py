"""Search pipeline: navigate, scroll, extract, enrich, harvest."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence
from urllib.parse import quote

from maps_scraper.core.config import Settings, get_settings
from maps_scraper.core.retry import RetryPolicy
from maps_scraper.core.session import BrowserSession
from maps_scraper.models import BusinessRecord, ExtractionConfig, SearchSession, SearchStats, StatsSnapshot
from maps_scraper.scraper.details import DetailEnricher
from maps_scraper.scraper.emails import EmailHarvester
from maps_scraper.scraper.listings import DEFAULT_BASE_URL, extract_listings, has_result_feed
from maps_scraper.scraper.scroll import ScrollController, ScrollTuning

logger = logging.getLogger(__name__)

DEFAULT_REGIONS = ("", "North", "South", "East", "West", "Downtown", "Near me")


def build_search_url(query: str, locale: str = "en") -> str:
    return f"{DEFAULT_BASE_URL}/maps/search/{quote(query.strip(), safe='')}?hl={quote(locale or 'en')}"


def navigation_timeout_ms(settings: Settings, query: str) -> int:
    """Non-ASCII queries get the longer navigation timeout."""
    if query and not query.isascii():
        return settings.non_ascii_navigation_timeout_ms
    return settings.navigation_timeout_ms


class MapsScraper:
    """One browser, any number of sequential searches.

    Usage::

        async with MapsScraper() as scraper:
            records = await scraper.search(ExtractionConfig(query="coffee shops", max_results=20))
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        browser: Optional[BrowserSession] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self._logger = logger or logging.getLogger(__name__)
        self._sleep = sleep
        self.browser = browser or BrowserSession(self.settings, logger=self._logger)
        self.retry = RetryPolicy(
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
            sleep=sleep,
            logger=self._logger,
        )
        self.details = DetailEnricher(self.settings, retry=self.retry, sleep=sleep, logger=self._logger)
        self.harvester = EmailHarvester(self.browser, self.settings, sleep=sleep, logger=self._logger)
        self.stats = SearchStats()
        self._final_result_count = 0

    async def init(self) -> None:
        await self.browser.init()

    async def close(self) -> None:
        await self.browser.close()

    async def __aenter__(self) -> "MapsScraper":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def reset_stats(self) -> None:
        self.stats = SearchStats()
        self._final_result_count = 0

    def get_stats(self) -> StatsSnapshot:
        return StatsSnapshot(
            loaded_count=self.stats.loaded_count,
            extracted_count=self.stats.extracted_count,
            scroll_attempts=self.stats.scroll_attempts,
            emails_extracted=self.stats.emails_extracted,
            final_result_count=self._final_result_count,
            email_stats=self.harvester.stats(),
        )

    async def search(self, config: ExtractionConfig) -> List[BusinessRecord]:
        """Run the whole pipeline for one query or direct URL."""
        self.reset_stats()
        results = await self._search(config)
        self._final_result_count = len(results)
        return results

    async def search_multiple_regions(
        self,
        config: ExtractionConfig,
        regions: Optional[Sequence[str]] = None,
    ) -> List[BusinessRecord]:
        """Repeat the search with region qualifiers and merge the results by identity."""
        if config.direct_url:
            raise ValueError("Region qualifiers only apply to query searches")

        regions = list(regions) if regions else list(DEFAULT_REGIONS)
        self.reset_stats()
        merged: Dict[str, BusinessRecord] = {}

        for position, region in enumerate(regions):
            label = region or "base query"
            try:
                records = await self._search(config.for_region(region))
            except Exception as exc:  # noqa: BLE001
                self._logger.error("Search for region %s failed: %s", label, exc)
            else:
                before = len(merged)
                for record in records:
                    merged.setdefault(record.identity, record)
                self._logger.info(
                    "Region %s added %s new results (%s total)", label, len(merged) - before, len(merged)
                )

            if len(merged) >= config.max_results:
                self._logger.info("Reached %s unique results; stopping region search", config.max_results)
                break
            if position + 1 < len(regions):
                await self._sleep(self.settings.region_delay)

        results = list(merged.values())[: config.max_results]
        self._final_result_count = len(results)
        return results

    async def _search(self, config: ExtractionConfig) -> List[BusinessRecord]:
        async with self.browser.open_page(locale=config.locale) as page:
            session = SearchSession(page=page, config=config)
            try:
                return await self._run_pipeline(session)
            finally:
                self._accumulate(session.stats)

    async def _run_pipeline(self, session: SearchSession) -> List[BusinessRecord]:
        config, page = session.config, session.page

        if config.direct_url:
            url = config.direct_url
            timeout = self.settings.navigation_timeout_ms
            self._logger.info("Loading URL: %s", url)
        else:
            url = build_search_url(config.query, config.locale)
            timeout = navigation_timeout_ms(self.settings, config.query)
            self._logger.info("Searching: %s", config.query)
            self._logger.debug("URL: %s", url)

        await self.retry.execute(
            lambda: page.goto(url, wait_until="domcontentloaded", timeout=timeout),
            max_attempts=self.settings.navigation_attempts,
            label=f"Navigation to {url}",
        )
        await self._sleep(self.settings.initial_load_wait)

        if not config.direct_url and not has_result_feed(await page.content()):
            self._logger.info("No results found for %s", config.query)
            return []

        tuning = ScrollTuning.from_settings(self.settings, config.max_scrolls)
        await ScrollController(tuning, sleep=self._sleep, logger=self._logger).run(page, session.stats)

        businesses = extract_listings(
            await page.content(),
            seen=session.seen,
            base_url=DEFAULT_BASE_URL,
            locale=config.locale,
            logger=self._logger,
        )
        session.stats.extracted_count = len(businesses)
        if len(businesses) > config.max_results:
            self._logger.info("Extracted %s unique businesses, keeping %s", len(businesses), config.max_results)
            businesses = businesses[: config.max_results]

        if config.scrape_details and businesses:
            await self.details.enrich(page, businesses, config.locale)

        if config.scrape_emails and businesses:
            results = await self.harvester.harvest(businesses)
            session.stats.emails_extracted = sum(len(result.value or []) for result in results if result.ok)

        return businesses

    def _accumulate(self, stats: SearchStats) -> None:
        self.stats.loaded_count += stats.loaded_count
        self.stats.extracted_count += stats.extracted_count
        self.stats.scroll_attempts += stats.scroll_attempts
        self.stats.emails_extracted += stats.emails_extracted
