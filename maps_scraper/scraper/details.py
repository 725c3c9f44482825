"""Per-business detail view enrichment."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from bs4 import BeautifulSoup

from maps_scraper.core.config import Settings, get_settings
from maps_scraper.core.retry import RetryExhaustedError, RetryPolicy
from maps_scraper.etl.normalize import (
    clean_business_hours,
    clean_business_type,
    clean_phone_number,
    clean_unicode_text,
    clean_website_url,
    is_day_name,
    is_price_symbol_run,
    order_hours,
    region_from_locale,
    validate_address,
)
from maps_scraper.models import BusinessRecord, ItemResult
from maps_scraper.scraper.listings import resolve_first

logger = logging.getLogger(__name__)

EXPAND_HOURS_JS = """
() => {
    const control = document.querySelector('button[data-item-id*="oh"]')
        || document.querySelector('[aria-label*="hours" i][role="button"]')
        || document.querySelector('[aria-label*="營業時間"]')
        || document.querySelector('[aria-label*="営業時間"]');
    if (!control) {
        return false;
    }
    control.click();
    return true;
}
"""

LITERAL_PRICE_PATTERN = re.compile(r"[$€£¥₩₹]\s*\d|\d\s*[$€£¥₩₹]")
HOURS_LABEL_SELECTORS = (
    '[data-item-id="oh"][aria-label]',
    'div[aria-label*="hours" i]',
    '[aria-label*="營業時間"]',
    '[aria-label*="営業時間"]',
    '[aria-label*="영업시간"]',
)


@dataclass
class DetailFields:
    address: str = ""
    phone: str = ""
    website: str = ""
    business_type: str = ""
    price_level: str = ""
    hours: List[str] = field(default_factory=list)
    hours_raw: Dict[str, str] = field(default_factory=dict)


@dataclass
class DetailContext:
    soup: BeautifulSoup
    locale: Optional[str] = None


def _label_or_text(node: Any) -> str:
    if node is None:
        return ""
    return clean_unicode_text(node.get("aria-label") or node.get_text(" ", strip=True))


# ---------- Hours ----------


def parse_hours_table(soup: BeautifulSoup) -> Dict[str, str]:
    """Day -> range mapping from the expanded weekly hours table."""
    raw: Dict[str, str] = {}
    for row in soup.select("table tr"):
        cells = row.find_all(["th", "td"])
        if len(cells) < 2:
            continue
        day = clean_unicode_text(cells[0].get_text(" ", strip=True))
        value = _label_or_text(cells[1])
        if is_day_name(day) and value and day not in raw:
            raw[day] = value
    return raw


def parse_compact_hours(text: str) -> Dict[str, str]:
    """Parse ``"Monday, 9 AM to 5 PM; Tuesday, ..."`` style accessible labels."""
    raw: Dict[str, str] = {}
    for chunk in re.split(r"[;；]", clean_business_hours(text)):
        day, sep, value = chunk.strip().partition(",")
        if not sep:
            day, sep, value = chunk.strip().partition(" ")
        day, value = day.strip(), value.strip().rstrip(".")
        if is_day_name(day) and value and day not in raw:
            raw[day] = value
    return raw


def parse_hours(soup: BeautifulSoup) -> Dict[str, Any]:
    raw = parse_hours_table(soup)
    if raw:
        return {"hours": order_hours(raw), "hours_raw": raw}

    for selector in HOURS_LABEL_SELECTORS:
        node = soup.select_one(selector)
        if node is None:
            continue
        compact = clean_business_hours(node.get("aria-label") or "")
        if not compact:
            continue
        raw = parse_compact_hours(compact)
        if raw:
            return {"hours": order_hours(raw), "hours_raw": raw}
        return {"hours": [compact], "hours_raw": {}}

    return {"hours": [], "hours_raw": {}}


# ---------- Field strategies ----------


def _address_from_label(ctx: DetailContext) -> Optional[str]:
    node = ctx.soup.select_one('button[data-item-id="address"]')
    if node is None or not node.get("aria-label"):
        return None
    return validate_address(node.get("aria-label"), ctx.locale) or None


def _address_from_text(ctx: DetailContext) -> Optional[str]:
    node = ctx.soup.select_one('button[data-item-id="address"]')
    if node is None:
        return None
    return validate_address(node.get_text(" ", strip=True), ctx.locale) or None


ADDRESS_STRATEGIES: Sequence[Callable[[DetailContext], Optional[str]]] = (
    _address_from_label,
    _address_from_text,
)


def _phone_from_label(ctx: DetailContext) -> Optional[str]:
    node = ctx.soup.select_one('button[data-item-id^="phone"]')
    if node is None:
        return None
    return clean_phone_number(_label_or_text(node), region_from_locale(ctx.locale)) or None


def _phone_from_item_id(ctx: DetailContext) -> Optional[str]:
    node = ctx.soup.select_one('[data-item-id^="phone:tel:"]')
    if node is None:
        return None
    raw = node.get("data-item-id", "").split("tel:", 1)[-1]
    return clean_phone_number(raw, region_from_locale(ctx.locale)) or None


PHONE_STRATEGIES: Sequence[Callable[[DetailContext], Optional[str]]] = (
    _phone_from_label,
    _phone_from_item_id,
)


def _website_from_authority(ctx: DetailContext) -> Optional[str]:
    node = ctx.soup.select_one('a[data-item-id="authority"][href]')
    return clean_website_url(node.get("href")) if node is not None else None


def _website_from_label(ctx: DetailContext) -> Optional[str]:
    for node in ctx.soup.select("a[aria-label][href]"):
        label = node.get("aria-label") or ""
        if "website" in label.lower() or "網站" in label or "ウェブサイト" in label or "웹사이트" in label:
            return clean_website_url(node.get("href")) or None
    return None


WEBSITE_STRATEGIES: Sequence[Callable[[DetailContext], Optional[str]]] = (
    _website_from_authority,
    _website_from_label,
)


def _type_from_category_control(ctx: DetailContext) -> Optional[str]:
    for node in ctx.soup.select('button[jsaction*="category"]'):
        business_type = clean_business_type(node.get_text(" ", strip=True))
        if business_type:
            return business_type
    return None


def _type_from_category_class(ctx: DetailContext) -> Optional[str]:
    for node in ctx.soup.select('button[class*="DkEaL"], span[class*="DkEaL"]'):
        business_type = clean_business_type(node.get_text(" ", strip=True))
        if business_type:
            return business_type
    return None


BUSINESS_TYPE_STRATEGIES: Sequence[Callable[[DetailContext], Optional[str]]] = (
    _type_from_category_control,
    _type_from_category_class,
)


def _price_from_symbol_run(ctx: DetailContext) -> Optional[str]:
    for node in ctx.soup.find_all("span"):
        if node.find("span") is not None:
            continue
        text = clean_unicode_text(node.get_text(strip=True))
        if not is_price_symbol_run(text):
            continue
        surrounding = node.parent.get_text(" ", strip=True) if node.parent is not None else ""
        if LITERAL_PRICE_PATTERN.search(surrounding):
            continue
        return text
    return None


PRICE_STRATEGIES: Sequence[Callable[[DetailContext], Optional[str]]] = (_price_from_symbol_run,)


def parse_detail(html: str, locale: Optional[str] = None) -> DetailFields:
    """Read every detail field from a rendered detail view; misses stay empty."""
    ctx = DetailContext(soup=BeautifulSoup(html or "", "html.parser"), locale=locale)
    hours = parse_hours(ctx.soup)
    return DetailFields(
        address=resolve_first(ADDRESS_STRATEGIES, ctx) or "",
        phone=resolve_first(PHONE_STRATEGIES, ctx) or "",
        website=resolve_first(WEBSITE_STRATEGIES, ctx) or "",
        business_type=resolve_first(BUSINESS_TYPE_STRATEGIES, ctx) or "",
        price_level=resolve_first(PRICE_STRATEGIES, ctx) or "",
        hours=hours["hours"],
        hours_raw=hours["hours_raw"],
    )


def apply_detail(business: BusinessRecord, fields: DetailFields) -> BusinessRecord:
    for name in ("address", "phone", "website", "business_type", "price_level"):
        value = getattr(fields, name)
        if value:
            setattr(business, name, value)
    if fields.hours:
        business.hours = list(fields.hours)
        business.hours_raw = dict(fields.hours_raw)
    return business


class DetailEnricher:
    """Visit each business's detail view and merge what it shows into the record."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        retry: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._logger = logger or logging.getLogger(__name__)
        self._sleep = sleep
        self.retry = retry or RetryPolicy(
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
            sleep=sleep,
            logger=self._logger,
        )

    async def enrich(
        self,
        page: Any,
        businesses: Sequence[BusinessRecord],
        locale: Optional[str] = None,
    ) -> List[ItemResult[BusinessRecord]]:
        self._logger.info("Fetching details for %s businesses", len(businesses))
        results: List[ItemResult[BusinessRecord]] = []
        for position, business in enumerate(businesses):
            results.append(await self.enrich_one(page, business, locale))
            if position + 1 < len(businesses):
                await self._sleep(self.settings.detail_pause)

        failed = [result for result in results if not result.ok]
        self._logger.info(
            "Detail enrichment finished: %s succeeded, %s failed",
            len(results) - len(failed),
            len(failed),
        )
        return results

    async def enrich_one(
        self,
        page: Any,
        business: BusinessRecord,
        locale: Optional[str] = None,
    ) -> ItemResult[BusinessRecord]:
        if not business.source_url:
            return ItemResult.failure(business.identity, "no detail URL")

        try:
            await self.retry.execute(
                lambda: page.goto(
                    business.source_url,
                    wait_until="domcontentloaded",
                    timeout=self.settings.detail_timeout_ms,
                ),
                max_attempts=self.settings.detail_attempts,
                label=f"Detail navigation for {business.name}",
            )
            await self._sleep(self.settings.detail_settle_wait)
            if await self._expand_hours(page):
                await self._sleep(self.settings.hours_expand_wait)
            html = await page.content()
        except RetryExhaustedError as exc:
            self._logger.warning("Skipping details for %s: %s", business.name, exc)
            return ItemResult.failure(business.identity, str(exc))
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("Failed to read detail view for %s: %s", business.name, exc)
            return ItemResult.failure(business.identity, str(exc))

        apply_detail(business, parse_detail(html, locale))
        return ItemResult.success(business.identity, business)

    async def _expand_hours(self, page: Any) -> bool:
        try:
            return bool(await page.evaluate(EXPAND_HOURS_JS))
        except Exception as exc:  # noqa: BLE001
            self._logger.debug("Hours expansion unavailable: %s", exc)
            return False
