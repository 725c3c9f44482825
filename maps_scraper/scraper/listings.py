"""Turn the rendered result feed into deduplicated business records.

Every field is resolved by an ordered tuple of strategies. A strategy is a
plain function ``(ListingContext) -> Optional[value]``; the first non-empty
answer wins, so each fallback can be exercised on its own against a small
HTML snippet.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar
from urllib.parse import unquote, urljoin

from bs4 import BeautifulSoup, Tag

from maps_scraper.etl.normalize import (
    clean_address,
    clean_business_name,
    clean_business_type,
    clean_phone_number,
    clean_unicode_text,
    clean_website_url,
    extract_price_level,
    is_listing_noise,
    is_price_symbol_run,
    normalize_rating,
    normalize_review_count,
    region_from_locale,
)
from maps_scraper.models import BusinessRecord
from maps_scraper.scraper.scroll import LISTING_LINK_SELECTOR

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BASE_URL = "https://www.google.com"

PLACE_PATH_PATTERN = re.compile(r"/maps/place/[^/?#]+/(?!data=|@)([^/?#]+)")
FEATURE_ID_PATTERN = re.compile(r"!1s(0x[0-9a-fA-F]+:0x[0-9a-fA-F]+)")
PLACE_ID_PATTERN = re.compile(r"!19s([A-Za-z0-9_-]{10,})")
KNOWLEDGE_ID_PATTERN = re.compile(r"!16s([^!?&#]+)")
COORDINATE_PATTERN = re.compile(r"!3d(-?\d+(?:\.\d+)?)!4d(-?\d+(?:\.\d+)?)")
REVIEWS_IN_LABEL_PATTERN = re.compile(
    r"(\d[\d,.]*\s*[KkMm]?)\s*(?:reviews?|則評論|件のクチコミ|개의 리뷰|리뷰)", re.IGNORECASE
)
PARENTHETICAL_COUNT_PATTERN = re.compile(r"\((\d[\d,]*)\)")
PHONE_CANDIDATE_PATTERN = re.compile(
    r"(?<![\d$€£¥₩₹])(?:\+\d{1,3}[\s.-]?)?(?:\(\d{1,4}\)|\d{1,4})(?:[\s.-]?\d{2,4}){2,3}(?!\d)"
)
ADDRESS_HINT_PATTERN = re.compile(
    r"\d|,|\b(street|st|avenue|ave|road|rd|drive|dr|boulevard|blvd|lane|ln|highway|hwy)\b"
    r"|路|街|號|号|區|区|市|町|丁目|동|로|길",
    re.IGNORECASE,
)

ID_ATTRIBUTES = ("data-cid", "data-place-id", "data-result-id")
STAR_LABEL_MARKERS = ("star", "Star", "星", "étoile", "Stern", "별")
PRICE_LABEL_MARKERS = ("Price", "price", "價格", "価格", "가격")
NO_RESULTS_SELECTORS = (
    '[aria-label*="no results" i]',
    '[aria-label*="沒有結果"]',
    '[aria-label*="結果はありません"]',
)


@dataclass
class ListingContext:
    link: Tag
    container: Tag
    href: str
    index: int
    name: str = ""
    coordinates: Optional[Tuple[float, float]] = None

    def detail_spans(self) -> List[str]:
        return detail_span_texts(self.container)


Strategy = Callable[[ListingContext], Optional[T]]


def resolve_first(strategies: Iterable[Callable[..., Optional[T]]], context: object) -> Optional[T]:
    for strategy in strategies:
        value = strategy(context)
        if value:
            return value
    return None


def _text(node: Optional[Tag]) -> str:
    if node is None:
        return ""
    return clean_unicode_text(node.get_text(" ", strip=True))


def _is_element(node: object) -> bool:
    return isinstance(node, Tag) and not isinstance(node, BeautifulSoup)


# ---------- Container resolution ----------


def _closest(link: Tag, predicate: Callable[[Tag], bool]) -> Optional[Tag]:
    for parent in link.parents:
        if _is_element(parent) and predicate(parent):
            return parent
    return None


def _ancestor(link: Tag, depth: int) -> Optional[Tag]:
    node: Optional[Tag] = link
    for _ in range(depth):
        node = node.parent if node is not None else None
    return node if _is_element(node) else None


CONTAINER_STRATEGIES: Sequence[Callable[[Tag], Optional[Tag]]] = (
    lambda link: _closest(link, lambda tag: tag.name == "div" and "mouseover:pane" in (tag.get("jsaction") or "")),
    lambda link: _closest(link, lambda tag: tag.name == "div" and tag.has_attr("data-cid")),
    lambda link: _closest(link, lambda tag: tag.name == "div" and tag.has_attr("jsaction")),
    lambda link: _ancestor(link, 3),
    lambda link: _ancestor(link, 2),
)


def find_container(link: Tag) -> Optional[Tag]:
    return resolve_first(CONTAINER_STRATEGIES, link)


# ---------- Identity ----------


def parse_coordinates(href: str) -> Optional[Tuple[float, float]]:
    match = COORDINATE_PATTERN.search(href or "")
    if not match:
        return None
    latitude, longitude = float(match.group(1)), float(match.group(2))
    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        return None
    return latitude, longitude


def _id_from_place_path(ctx: ListingContext) -> Optional[str]:
    match = PLACE_PATH_PATTERN.search(ctx.href)
    return match.group(1) if match else None


def _id_from_feature_param(ctx: ListingContext) -> Optional[str]:
    match = FEATURE_ID_PATTERN.search(ctx.href)
    return match.group(1).lower() if match else None


def _id_from_secondary_param(ctx: ListingContext) -> Optional[str]:
    match = PLACE_ID_PATTERN.search(ctx.href)
    if match:
        return match.group(1)
    match = KNOWLEDGE_ID_PATTERN.search(ctx.href)
    return unquote(match.group(1)) if match else None


def _id_from_data_attribute(ctx: ListingContext) -> Optional[str]:
    for node in [ctx.link, *ctx.link.parents]:
        if not _is_element(node):
            continue
        for attribute in ID_ATTRIBUTES:
            value = node.get(attribute)
            if value:
                return str(value).strip()
    return None


def _hex_coordinate(value: float) -> str:
    return format(int(round(value * 1e6)) & 0xFFFFFFFF, "08x")


def _id_from_coordinates(ctx: ListingContext) -> Optional[str]:
    if ctx.coordinates is None:
        return None
    latitude, longitude = ctx.coordinates
    return f"coord_{_hex_coordinate(latitude)}{_hex_coordinate(longitude)}"


def _id_from_content_hash(ctx: ListingContext) -> Optional[str]:
    if not ctx.name:
        return None
    coords = "" if ctx.coordinates is None else "%.6f,%.6f" % ctx.coordinates
    digest = hashlib.sha1(f"{ctx.name}|{coords}".encode("utf-8")).hexdigest()
    return f"hash_{digest[:16]}"


def _id_from_sequence(ctx: ListingContext) -> Optional[str]:
    return f"place_{ctx.index}"


IDENTITY_STRATEGIES: Sequence[Strategy[str]] = (
    _id_from_place_path,
    _id_from_feature_param,
    _id_from_secondary_param,
    _id_from_data_attribute,
    _id_from_coordinates,
    _id_from_content_hash,
    _id_from_sequence,
)


def resolve_identity(ctx: ListingContext) -> str:
    identity = resolve_first(IDENTITY_STRATEGIES, ctx) or f"place_{ctx.index}"
    return identity.split("?", 1)[0].strip()


# ---------- Field strategies ----------


def _name_from_selector(selector: str) -> Strategy[str]:
    def strategy(ctx: ListingContext) -> Optional[str]:
        text = clean_business_name(_text(ctx.container.select_one(selector)))
        return text if text and not is_listing_noise(text) else None

    return strategy


def _name_from_link_label(ctx: ListingContext) -> Optional[str]:
    return clean_business_name(ctx.link.get("aria-label")) or None


def _name_from_link_text(ctx: ListingContext) -> Optional[str]:
    return clean_business_name(_text(ctx.link.find("div"))) or None


NAME_STRATEGIES: Sequence[Strategy[str]] = (
    _name_from_selector('div[class*="fontHeadlineSmall"]'),
    _name_from_selector('[role="heading"]'),
    _name_from_link_label,
    _name_from_selector('div[class*="fontBodyMedium"]'),
    _name_from_link_text,
)


def _star_label(ctx: ListingContext) -> Optional[str]:
    for node in ctx.container.select('span[role="img"][aria-label]'):
        label = node.get("aria-label") or ""
        if any(marker in label for marker in STAR_LABEL_MARKERS):
            return label
    return None


def _rating_from_star_label(ctx: ListingContext) -> Optional[float]:
    label = _star_label(ctx)
    return normalize_rating(label) if label else None


def _rating_from_rating_span(ctx: ListingContext) -> Optional[float]:
    text = _text(ctx.container.select_one('span[class*="MW4etd"]'))
    return normalize_rating(text) if text else None


RATING_STRATEGIES: Sequence[Strategy[float]] = (
    _rating_from_star_label,
    _rating_from_rating_span,
)


def _reviews_from_count_span(ctx: ListingContext) -> Optional[int]:
    text = _text(ctx.container.select_one('span[class*="UY7F9"]'))
    return normalize_review_count(text) if text else None


def _reviews_from_star_label(ctx: ListingContext) -> Optional[int]:
    match = REVIEWS_IN_LABEL_PATTERN.search(_star_label(ctx) or "")
    return normalize_review_count(match.group(1)) if match else None


def _reviews_from_parenthetical(ctx: ListingContext) -> Optional[int]:
    match = PARENTHETICAL_COUNT_PATTERN.search(_text(ctx.container))
    return normalize_review_count(match.group(1)) if match else None


REVIEW_STRATEGIES: Sequence[Strategy[int]] = (
    _reviews_from_count_span,
    _reviews_from_star_label,
    _reviews_from_parenthetical,
)


def detail_span_texts(container: Tag) -> List[str]:
    """Leaf span texts of the card's detail rows, in document order, without separators."""
    texts: List[str] = []
    for row in container.select('div[class*="W4Efsd"]'):
        for span in row.find_all("span"):
            if span.find("span") is not None:
                continue
            text = clean_unicode_text(span.get_text(" ", strip=True)).strip("·⋅ ").strip()
            if text and text not in texts:
                texts.append(text)
    return texts


def _looks_like_phone(text: str) -> bool:
    match = PHONE_CANDIDATE_PATTERN.fullmatch(text.strip())
    return bool(match) and len(re.sub(r"\D", "", text)) >= 7


def _looks_like_address(text: str) -> bool:
    if is_listing_noise(text) or _looks_like_phone(text):
        return False
    return bool(ADDRESS_HINT_PATTERN.search(text))


def _type_from_detail_spans(ctx: ListingContext) -> Optional[str]:
    for text in ctx.detail_spans():
        if _looks_like_phone(text):
            continue
        business_type = clean_business_type(text)
        if business_type and not ADDRESS_HINT_PATTERN.search(business_type):
            return business_type
    return None


def _first_detail_row_parts(ctx: ListingContext) -> List[str]:
    row = ctx.container.select_one('div[class*="W4Efsd"]')
    return [part.strip() for part in _text(row).split("·") if part.strip()]


def _type_from_separated_row(ctx: ListingContext) -> Optional[str]:
    parts = _first_detail_row_parts(ctx)
    return clean_business_type(parts[0]) if parts else None


BUSINESS_TYPE_STRATEGIES: Sequence[Strategy[str]] = (
    _type_from_detail_spans,
    _type_from_separated_row,
)


def _address_from_detail_spans(ctx: ListingContext) -> Optional[str]:
    for text in reversed(ctx.detail_spans()):
        if _looks_like_address(text):
            address = clean_address(text)
            if address:
                return address
    return None


def _address_from_separated_row(ctx: ListingContext) -> Optional[str]:
    parts = _first_detail_row_parts(ctx)
    if len(parts) < 2 or not _looks_like_address(parts[-1]):
        return None
    return clean_address(parts[-1])


ADDRESS_STRATEGIES: Sequence[Strategy[str]] = (
    _address_from_detail_spans,
    _address_from_separated_row,
)


def _price_from_label(ctx: ListingContext) -> Optional[str]:
    for node in ctx.container.select("span[aria-label]"):
        label = node.get("aria-label") or ""
        if any(marker in label for marker in PRICE_LABEL_MARKERS):
            return extract_price_level(_text(node) or label) or None
    return None


def _price_from_symbol_span(ctx: ListingContext) -> Optional[str]:
    for text in ctx.detail_spans():
        if is_price_symbol_run(text):
            return text
    return None


PRICE_STRATEGIES: Sequence[Strategy[str]] = (
    _price_from_label,
    _price_from_symbol_span,
)


def _website_from_action_link(ctx: ListingContext) -> Optional[str]:
    for node in ctx.container.select("a[href]"):
        label = (node.get("aria-label") or "") + " " + (node.get("data-value") or "")
        if "website" in label.lower() or "網站" in label or "ウェブサイト" in label:
            return clean_website_url(node.get("href")) or None
    return None


WEBSITE_STRATEGIES: Sequence[Strategy[str]] = (_website_from_action_link,)


def phone_candidates(text: str) -> List[str]:
    """Phone-shaped substrings, skipping short digit ranges that read like prices."""
    candidates: List[str] = []
    for match in PHONE_CANDIDATE_PATTERN.finditer(text or ""):
        raw = match.group(0).strip()
        if len(re.sub(r"\D", "", raw)) < 7:
            continue
        candidates.append(raw)
    return candidates


def extract_phone(ctx: ListingContext, region: Optional[str]) -> str:
    for raw in phone_candidates(_text(ctx.container)):
        phone = clean_phone_number(raw, region)
        if phone:
            return phone
    return ""


# ---------- Page level ----------


def has_result_feed(html: str) -> bool:
    soup = BeautifulSoup(html or "", "html.parser")
    if soup.select_one('div[role="feed"]') is None:
        return False
    return not any(soup.select_one(selector) for selector in NO_RESULTS_SELECTORS)


def _build_record(ctx: ListingContext, locale: Optional[str]) -> Optional[BusinessRecord]:
    name = resolve_first(NAME_STRATEGIES, ctx)
    if not name:
        return None
    ctx.name = name
    ctx.coordinates = parse_coordinates(ctx.href)

    return BusinessRecord(
        identity=resolve_identity(ctx),
        name=name,
        coordinates=ctx.coordinates,
        rating=resolve_first(RATING_STRATEGIES, ctx) or 0.0,
        review_count=resolve_first(REVIEW_STRATEGIES, ctx) or 0,
        address=resolve_first(ADDRESS_STRATEGIES, ctx) or "",
        phone=extract_phone(ctx, region_from_locale(locale)),
        website=resolve_first(WEBSITE_STRATEGIES, ctx) or "",
        business_type=resolve_first(BUSINESS_TYPE_STRATEGIES, ctx) or "",
        price_level=resolve_first(PRICE_STRATEGIES, ctx) or "",
        source_url=ctx.href,
    )


def extract_listings(
    html: str,
    *,
    seen: Set[str],
    base_url: str = DEFAULT_BASE_URL,
    locale: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> List[BusinessRecord]:
    """Parse every rendered listing link; records whose identity is in ``seen`` are dropped.

    ``seen`` is owned by the caller's search session and updated in place.
    """
    log = logger or logging.getLogger(__name__)
    soup = BeautifulSoup(html or "", "html.parser")
    records: List[BusinessRecord] = []

    for index, link in enumerate(soup.select(LISTING_LINK_SELECTOR)):
        try:
            container = find_container(link)
            if container is None:
                log.debug("No container for listing link %s; skipping", index)
                continue

            href = urljoin(base_url or DEFAULT_BASE_URL, link.get("href") or "")
            record = _build_record(ListingContext(link=link, container=container, href=href, index=index), locale)
            if record is None:
                continue
            if record.identity in seen:
                continue
            seen.add(record.identity)
            records.append(record)
        except Exception as exc:  # noqa: BLE001
            log.warning("Failed to extract listing %s: %s", index, exc)

    log.info("Parsed %s unique listings from page", len(records))
    return records
