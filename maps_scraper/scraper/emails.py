"""Public contact email discovery on business websites.

Websites are fetched in fixed-size batches; every fetch in a batch runs
concurrently on its own short-lived page that is closed as soon as the scan
finishes.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from maps_scraper.core.config import Settings, get_settings
from maps_scraper.etl.normalize import EMAIL_REGEX, extract_emails, validate_email
from maps_scraper.models import BusinessRecord, ItemResult

logger = logging.getLogger(__name__)

EMAIL_BLACKLIST = (
    "example.com",
    "sentry.io",
    "wixpress.com",
    "squarespace.com",
    "wordpress.com",
    "cloudflare.com",
    "googleapis.com",
    "@2x.",
    "@3x.",
    "noreply",
    "no-reply",
    "donotreply",
)
PLATFORM_HOST_MARKERS = ("google.com", "goo.gl")
CONTACT_PATH_MARKERS = ("/contact", "/contact-us", "/get-in-touch", "/about")
CONTACT_TEXT_MARKERS = ("contact", "about us", "get in touch")


def _host(url: str) -> str:
    return re.sub(r"^www\.", "", urlparse(url or "").netloc.lower())


def is_harvestable(website: Optional[str]) -> bool:
    """True when the website points at the business itself rather than a map platform."""
    if not website:
        return False
    host = _host(website)
    return bool(host) and not any(marker in host for marker in PLATFORM_HOST_MARKERS)


def filter_valid_emails(emails: Iterable[str]) -> List[str]:
    valid: Set[str] = set()
    for email in emails:
        lowered = (email or "").strip().lower()
        if any(blocked in lowered for blocked in EMAIL_BLACKLIST):
            continue
        if validate_email(lowered):
            valid.add(lowered)
    return sorted(valid)


def scan_page_emails(html: str) -> List[str]:
    """Emails in visible text, ``mailto:`` links and ``data-email``/``data-contact`` attributes."""
    soup = BeautifulSoup(html or "", "html.parser")
    found: Set[str] = set(extract_emails(soup.get_text(" ", strip=True)))

    for anchor in soup.select('a[href^="mailto:"]'):
        value = anchor["href"].split(":", 1)[1]
        email = value.split("?")[0].strip().lower()
        if email:
            found.add(email)

    for node in soup.select("[data-email], [data-contact]"):
        payload = node.get("data-email") or node.get("data-contact") or ""
        found.update(match.group(0).lower() for match in EMAIL_REGEX.finditer(payload))

    return sorted(found)


def find_contact_page_url(html: str, page_url: str) -> Optional[str]:
    """First same-site link that looks like a contact or about page."""
    soup = BeautifulSoup(html or "", "html.parser")
    site = _host(page_url)
    current = urlunparse(urlparse(page_url)._replace(query="", fragment=""))

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(("mailto:", "tel:", "javascript:", "#")):
            continue
        absolute = urljoin(page_url, href)
        if _host(absolute) != site:
            continue
        path = urlparse(absolute).path.lower()
        text = anchor.get_text(" ", strip=True).lower()
        if any(marker in path for marker in CONTACT_PATH_MARKERS) or any(
            marker in text for marker in CONTACT_TEXT_MARKERS
        ):
            candidate = urlunparse(urlparse(absolute)._replace(fragment=""))
            if candidate.rstrip("/") != current.rstrip("/"):
                return candidate
    return None


def pick_primary_email(emails: Sequence[str], website: Optional[str]) -> Optional[str]:
    if not emails:
        return None
    site = _host(website or "")
    if site:
        for email in emails:
            domain = email.rsplit("@", 1)[-1]
            if domain == site or domain.endswith("." + site) or site.endswith("." + domain):
                return email
    return emails[0]


class EmailHarvester:
    """Visit business websites in bounded concurrent batches and attach their emails."""

    def __init__(
        self,
        session: Any,
        settings: Optional[Settings] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)
        self._cache: Dict[str, List[str]] = {}
        self._failures: Dict[str, Exception] = {}
        self._in_flight: Dict[str, "asyncio.Future[List[str]]"] = {}
        self._visited: Set[str] = set()

    async def harvest(self, businesses: Sequence[BusinessRecord]) -> List[ItemResult[List[str]]]:
        targets = [business for business in businesses if is_harvestable(business.website)]
        batch_size = self.settings.email_batch_size
        total_batches = (len(targets) + batch_size - 1) // batch_size
        self._logger.info("Extracting emails from %s websites", len(targets))

        results: List[ItemResult[List[str]]] = []
        for batch_number, start in enumerate(range(0, len(targets), batch_size), start=1):
            batch = targets[start:start + batch_size]
            self._logger.info("Processing email batch %s of %s", batch_number, total_batches)
            results.extend(await asyncio.gather(*(self.harvest_one(business) for business in batch)))
            if start + batch_size < len(targets):
                await self._sleep(self.settings.email_batch_delay)

        found = sum(len(result.value or []) for result in results)
        self._logger.info("Extracted %s emails from %s websites", found, len(targets))
        return results

    async def harvest_one(self, business: BusinessRecord) -> ItemResult[List[str]]:
        try:
            emails = await self.extract_from_website(business.website)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("Failed to extract emails from %s: %s", business.website, exc)
            business.emails, business.email = [], None
            return ItemResult.failure(business.identity, str(exc))

        business.emails = list(emails)
        business.email = pick_primary_email(emails, business.website)
        return ItemResult.success(business.identity, list(emails))

    async def extract_from_website(self, url: str) -> List[str]:
        """Emails for ``url``; concurrent and repeat calls share one fetch and its outcome."""
        if url in self._cache:
            return list(self._cache[url])
        if url in self._failures:
            raise self._failures[url]

        pending = self._in_flight.get(url)
        if pending is None:
            self._visited.add(url)
            pending = asyncio.ensure_future(self._fetch(url))
            self._in_flight[url] = pending
        return list(await pending)

    async def _fetch(self, url: str) -> List[str]:
        try:
            emails = await self._scan_site(url)
        except Exception as exc:
            self._failures[url] = exc
            raise
        finally:
            self._in_flight.pop(url, None)
        self._cache[url] = emails
        self._logger.debug("Extracted %s emails from %s", len(emails), url)
        return emails

    async def _scan_site(self, url: str) -> List[str]:
        async with self.session.open_page(block_stylesheets=True) as page:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.settings.email_timeout_ms)
            await self._sleep(self.settings.email_settle_wait)
            html = await page.content()
            emails = filter_valid_emails(scan_page_emails(html))
            if emails or not self.settings.search_contact_page:
                return emails

            contact_url = find_contact_page_url(html, getattr(page, "url", None) or url)
            if not contact_url:
                return emails

            self._logger.info("Found contact page: %s", contact_url)
            try:
                await page.goto(
                    contact_url,
                    wait_until="domcontentloaded",
                    timeout=self.settings.contact_page_timeout_ms,
                )
                await self._sleep(self.settings.email_settle_wait / 2)
                return filter_valid_emails(scan_page_emails(await page.content()))
            except Exception as exc:  # noqa: BLE001
                self._logger.debug("Contact page %s failed: %s", contact_url, exc)
                return emails

    def stats(self) -> Dict[str, int]:
        return {
            "visited_urls": len(self._visited),
            "cached_urls": len(self._cache) + len(self._failures),
            "total_emails_found": sum(len(emails) for emails in self._cache.values()),
        }
