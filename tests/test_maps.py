import asyncio
from contextlib import asynccontextmanager

import pytest

from maps_scraper.core.config import Settings
from maps_scraper.core.retry import RetryExhaustedError
from maps_scraper.models import ExtractionConfig
from maps_scraper.scraper import maps
from maps_scraper.scraper.maps import MapsScraper
from maps_scraper.scraper.scroll import COUNT_LISTINGS_JS


def card(name, feature, spans=""):
    slug = name.replace(" ", "+")
    return (
        f'<div jsaction="mouseover:pane.{feature}">'
        f'<a aria-label="{name}" href="/maps/place/{slug}/data=!4m2!1s0x{feature}:0x{feature}"></a>'
        f'<div class="fontHeadlineSmall">{name}</div>'
        f'<div class="W4Efsd">{spans}</div>'
        "</div>"
    )


def feed(*cards):
    return '<div role="feed">' + "".join(cards) + "</div>"


class FakePage:
    """Serves ``pages[url]`` for the current URL, or ``pages["*"]`` for anything else."""

    def __init__(self, pages, listing_count=0, failing=()):
        self.pages = pages
        self.listing_count = listing_count
        self.failing = set(failing)
        self.visits = []
        self.url = ""

    async def goto(self, url, wait_until=None, timeout=None):
        self.visits.append((url, wait_until, timeout))
        if url in self.failing or "*" in self.failing:
            raise TimeoutError(f"Timeout {timeout}ms exceeded")
        self.url = url

    async def evaluate(self, script, arg=None):
        if script == COUNT_LISTINGS_JS:
            return self.listing_count
        return False

    async def content(self):
        return self.pages.get(self.url, self.pages.get("*", ""))


class FakeBrowser:
    def __init__(self, search_pages, sites=None):
        self.search_pages = list(search_pages)
        self.sites = sites or {}
        self.locales = []
        self.initialized = False
        self.closed = False

    async def init(self):
        self.initialized = True

    async def close(self):
        self.closed = True

    @asynccontextmanager
    async def open_page(self, *, locale="en", block_stylesheets=False):
        if block_stylesheets:
            yield FakePage(self.sites)
            return
        self.locales.append(locale)
        yield self.search_pages.pop(0)


async def no_sleep(seconds):
    return None


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def make_scraper(search_pages, sites=None, settings=None, sleep=no_sleep):
    browser = FakeBrowser(search_pages, sites)
    return MapsScraper(settings or Settings(), browser=browser, sleep=sleep), browser


def run(coro):
    return asyncio.run(coro)


def test_build_search_url_encodes_query():
    assert maps.build_search_url(" coffee shops ", "en") == "https://www.google.com/maps/search/coffee%20shops?hl=en"
    assert maps.build_search_url("咖啡", "zh-TW").startswith("https://www.google.com/maps/search/%E5%92%96")


def test_non_ascii_queries_get_longer_navigation_timeout():
    settings = Settings()

    assert maps.navigation_timeout_ms(settings, "ramen") == 30000
    assert maps.navigation_timeout_ms(settings, "ラーメン") == 45000


def test_search_caps_results_at_max_results():
    cards = [card(f"Coffee {i}", f"a{i}") for i in range(7)]
    page = FakePage({"*": feed(*cards)}, listing_count=7)
    scraper, browser = make_scraper([page])
    config = ExtractionConfig(
        query="coffee shops", max_results=5, max_scrolls=1, scrape_details=False, scrape_emails=False
    )

    records = run(scraper.search(config))

    assert len(records) == 5
    assert all(record.name and record.identity for record in records)
    assert len({record.identity for record in records}) == 5
    assert page.visits[0] == ("https://www.google.com/maps/search/coffee%20shops?hl=en", "domcontentloaded", 30000)
    assert browser.locales == ["en"]

    stats = scraper.get_stats()
    assert stats.scroll_attempts == 1
    assert stats.loaded_count == 7
    assert stats.extracted_count == 7
    assert stats.final_result_count == 5


def test_search_without_result_feed_returns_empty_list():
    page = FakePage({"*": '<div role="main"><div aria-label="No results found"></div></div>'})
    scraper, _ = make_scraper([page])

    records = run(scraper.search(ExtractionConfig(query="zzqx nothing here")))

    assert records == []
    assert scraper.get_stats().scroll_attempts == 0


def test_empty_feed_returns_empty_list_after_scrolling():
    page = FakePage({"*": feed()}, listing_count=0)
    scraper, _ = make_scraper([page])

    records = run(scraper.search(ExtractionConfig(query="empty", max_scrolls=3)))

    assert records == []
    assert scraper.get_stats().scroll_attempts == 3


def test_duplicate_identities_collapse_to_one_record():
    page = FakePage({"*": feed(card("Twin Cafe", "c1"), card("Twin Cafe Again", "c1"))}, listing_count=2)
    scraper, _ = make_scraper([page])

    records = run(scraper.search(ExtractionConfig(query="twin", scrape_details=False, scrape_emails=False)))

    assert [record.identity for record in records] == ["0xc1:0xc1"]
    assert records[0].name == "Twin Cafe"


def test_direct_url_skips_feed_check_and_uses_base_timeout():
    url = "https://www.google.com/maps/search/%E3%83%A9%E3%83%BC%E3%83%A1%E3%83%B3/@35.6,139.7,14z"
    page = FakePage({"*": card("Ramen Ya", "d1")}, listing_count=1)
    scraper, _ = make_scraper([page])
    config = ExtractionConfig(direct_url=url, max_scrolls=1, scrape_details=False, scrape_emails=False)

    records = run(scraper.search(config))

    assert [record.name for record in records] == ["Ramen Ya"]
    assert page.visits[0] == (url, "domcontentloaded", 30000)


def test_navigation_failure_raises_after_retries():
    page = FakePage({}, failing={"*"})
    scraper, _ = make_scraper([page])

    with pytest.raises(RetryExhaustedError):
        run(scraper.search(ExtractionConfig(query="coffee")))

    assert len(page.visits) == 2


def test_search_enriches_details_and_emails():
    blue_url = "https://www.google.com/maps/place/Blue+Bottle/data=!4m2!1s0xb1:0xb1"
    slow_url = "https://www.google.com/maps/place/Slow+Cafe/data=!4m2!1s0xb2:0xb2"
    listing_html = feed(
        card("Blue Bottle", "b1"),
        card("Slow Cafe", "b2", spans="<span>Bakery</span><span>·</span><span>12 Pine St</span>"),
    )
    detail_html = (
        '<a data-item-id="authority" href="https://bluebottlecoffee.com/"></a>'
        '<button data-item-id="phone:tel:+14155550132" aria-label="Phone: (415) 555-0132"></button>'
    )
    page = FakePage({"*": listing_html, blue_url: detail_html}, listing_count=2, failing={slow_url})
    sites = {"https://bluebottlecoffee.com": "<p>hello@bluebottlecoffee.com</p>"}
    scraper, _ = make_scraper([page], sites=sites)

    blue, slow = run(scraper.search(ExtractionConfig(query="coffee", max_results=10)))

    assert blue.website == "https://bluebottlecoffee.com"
    assert blue.phone == "+1 415-555-0132"
    assert blue.email == "hello@bluebottlecoffee.com"
    assert slow.address == "12 Pine St"
    assert slow.business_type == "Bakery"
    assert slow.website == "" and slow.hours == [] and slow.emails == []
    assert [url for url, _, _ in page.visits].count(slow_url) == 3

    stats = scraper.get_stats()
    assert stats.emails_extracted == 1
    assert stats.email_stats == {"visited_urls": 1, "cached_urls": 1, "total_emails_found": 1}


def test_multi_region_merges_by_identity_and_stops_at_cap():
    base = FakePage({"*": feed(card("Alpha", "e1"), card("Beta", "e2"))}, listing_count=2)
    north = FakePage({"*": feed(card("Beta", "e2"), card("Gamma", "e3"))}, listing_count=2)
    south = FakePage({"*": feed(card("Delta", "e4"))}, listing_count=1)
    sleep = RecordingSleep()
    scraper, browser = make_scraper([base, north, south], settings=Settings(region_delay=7.0), sleep=sleep)
    config = ExtractionConfig(query="coffee", max_results=3, scrape_details=False, scrape_emails=False)

    records = run(scraper.search_multiple_regions(config, ["", "North", "South"]))

    assert [record.name for record in records] == ["Alpha", "Beta", "Gamma"]
    assert "coffee%20North" in north.visits[0][0]
    assert south.visits == []
    assert sleep.calls.count(7.0) == 1

    stats = scraper.get_stats()
    assert stats.extracted_count == 4
    assert stats.final_result_count == 3


def test_multi_region_skips_failed_regions():
    base = FakePage({"*": feed(card("Alpha", "f1"))}, listing_count=1)
    broken = FakePage({}, failing={"*"})
    west = FakePage({"*": feed(card("Omega", "f9"))}, listing_count=1)
    scraper, _ = make_scraper([base, broken, west])
    config = ExtractionConfig(query="tea", max_results=10, scrape_details=False, scrape_emails=False)

    records = run(scraper.search_multiple_regions(config, ["", "East", "West"]))

    assert [record.name for record in records] == ["Alpha", "Omega"]


def test_multi_region_uses_default_regions():
    pages = [FakePage({"*": feed(card("Alpha", "g1"))}, listing_count=1) for _ in maps.DEFAULT_REGIONS]
    scraper, browser = make_scraper(pages)
    config = ExtractionConfig(query="tea", max_results=10, scrape_details=False, scrape_emails=False)

    records = run(scraper.search_multiple_regions(config))

    assert len(records) == 1
    assert len(browser.locales) == len(maps.DEFAULT_REGIONS)


def test_multi_region_rejects_direct_urls():
    scraper, _ = make_scraper([])

    with pytest.raises(ValueError):
        run(scraper.search_multiple_regions(ExtractionConfig(direct_url="https://www.google.com/maps/@1,2,3z")))


def test_context_manager_opens_and_closes_browser():
    scraper, browser = make_scraper([])

    async def scenario():
        async with scraper:
            assert browser.initialized

    run(scenario())

    assert browser.closed
