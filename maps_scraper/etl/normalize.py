"""Locale-aware cleaning of the text scraped from listings and detail panels."""

import logging
import math
import re
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse, urlunparse

import phonenumbers

logger = logging.getLogger(__name__)

# Shared exclusion patterns: text matching any of these is never an address or category.
RATING_PATTERN = re.compile(r"^\d+[.,]\d+\s*(\(|$)")
RATING_WITH_REVIEWS_PATTERN = re.compile(r"^[\d.,]+\s*\([\d,.]+\)$")
REVIEW_COUNT_PATTERN = re.compile(r"^\(?\s*[\d,.]+\s*[KkMm]?\s*\)$")
CURRENCY_AMOUNT_PATTERN = re.compile(r"[$€£¥₩₹]\s*\d|\d\s*[$€£¥₩₹]|^[$€£¥₩₹]+$")
OPEN_STATUS_PATTERN = re.compile(
    r"\b(open|opens|opening|closed|closes|closing)\b|營業中|已打烊|即將打烊|営業中|営業時間外|영업 ?중|영업 ?종료|⋅",
    re.IGNORECASE,
)
NUMERIC_ONLY_PATTERN = re.compile(r"^[\d\s.,()]+$")
PRICE_RANGE_PATTERN = re.compile(r"^[$€£¥₩₹]?\s*\d{1,4}\s*[-–~]\s*[$€£¥₩₹]?\s*\d{1,4}$")
EMAIL_REGEX = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
EMAIL_FULL_REGEX = re.compile(r"^[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}$", re.IGNORECASE)

_CONTROL_CHARS = re.compile(r"[\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F-\u009F\uE000-\uF8FF\uFFF0-\uFFFF\u200B-\u200D\uFEFF]")
_CJK = r"\u3040-\u30FF\u3400-\u4DBF\u4E00-\u9FFF"
_CJK_GAP = re.compile(rf"(?<=[{_CJK}])\s+(?=[{_CJK}])")
_ADDRESS_HOURS_TAIL = re.compile(r"(營業中|已打烊|即將打烊|Opens|Closes|Open 24 hours|⋅).*$", re.IGNORECASE)
_ADDRESS_LABEL = re.compile(r"^(address|地址|住所|주소)\s*[:：]\s*", re.IGNORECASE)
_HOURS_CHROME = re.compile(r"Copy open hours|\bSee more hours\b|·\s*See more|Hide open hours(?: for the week)?", re.IGNORECASE)
_PRICE_SYMBOLS = re.compile(r"([$€£¥₩₹])\1{0,3}")
_REPEATED_SYMBOL = re.compile(r"^([$€£¥₩₹])\1{0,3}$")

# Interface chrome that shares the category label styling on the detail panel.
INTERFACE_CHROME = {
    "collapse side panel",
    "expand side panel",
    "close",
    "back",
    "share",
    "save",
    "directions",
    "nearby",
    "send to phone",
    "收合側邊面板",
    "展開側邊面板",
    "サイドパネルを折りたたむ",
    "측면 패널 접기",
}

DAY_ORDER: List[List[str]] = [
    ["monday", "mon", "星期一", "週一", "周一", "月曜日", "月", "월요일", "월"],
    ["tuesday", "tue", "tues", "星期二", "週二", "周二", "火曜日", "火", "화요일", "화"],
    ["wednesday", "wed", "星期三", "週三", "周三", "水曜日", "水", "수요일", "수"],
    ["thursday", "thu", "thur", "thurs", "星期四", "週四", "周四", "木曜日", "木", "목요일", "목"],
    ["friday", "fri", "星期五", "週五", "周五", "金曜日", "金", "금요일", "금"],
    ["saturday", "sat", "星期六", "週六", "周六", "土曜日", "土", "토요일", "토"],
    ["sunday", "sun", "星期日", "星期天", "週日", "周日", "日曜日", "日", "일요일", "일"],
]
_DAY_INDEX = {alias: index for index, aliases in enumerate(DAY_ORDER) for alias in aliases}

_LOCALE_REGIONS = {
    "en": "US",
    "zh": "TW",
    "ja": "JP",
    "ko": "KR",
    "de": "DE",
    "fr": "FR",
    "es": "ES",
    "it": "IT",
}


def region_from_locale(locale: Optional[str]) -> Optional[str]:
    """Map a locale tag such as ``zh-TW`` or ``ja`` to a two-letter region code."""
    if not locale:
        return None
    parts = re.split(r"[-_]", locale.strip())
    if len(parts) > 1 and len(parts[-1]) == 2 and parts[-1].isalpha():
        return parts[-1].upper()
    return _LOCALE_REGIONS.get(parts[0].lower())


def clean_unicode_text(text: Optional[str]) -> str:
    if not text:
        return ""
    cleaned = _CONTROL_CHARS.sub("", str(text))
    return re.sub(r"\s+", " ", cleaned).strip()


def clean_business_name(text: Optional[str]) -> str:
    return clean_unicode_text(text)


def is_listing_noise(text: Optional[str]) -> bool:
    """True for rating, review-count, price, open/closed or separator text."""
    cleaned = clean_unicode_text(text)
    if not cleaned or cleaned in {"·", "⋅", "-", "|"}:
        return True
    return bool(
        RATING_PATTERN.match(cleaned)
        or REVIEW_COUNT_PATTERN.match(cleaned)
        or CURRENCY_AMOUNT_PATTERN.search(cleaned)
        or OPEN_STATUS_PATTERN.search(cleaned)
    )


def normalize_rating(value: Any) -> float:
    """Clamp a rating into [0.0, 5.0] with one decimal. Unparsable input gives 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = re.search(r"\d+(?:[.,]\d+)?", str(value))
        if not match:
            return 0.0
        number = float(match.group(0).replace(",", "."))
    if math.isnan(number):
        return 0.0
    number = min(max(number, 0.0), 5.0)
    return round(number, 1)


def normalize_review_count(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return 0
        return max(int(value), 0)

    text = str(value).strip().strip("()").strip()
    suffix = re.match(r"^(\d+(?:[.,]\d+)?)\s*([KkMm])$", text)
    if suffix:
        number = float(suffix.group(1).replace(",", "."))
        multiplier = 1000 if suffix.group(2).lower() == "k" else 1_000_000
        return int(round(number * multiplier))

    digits = re.sub(r"\D", "", text)
    return int(digits) if digits else 0


def clean_phone_number(raw: Optional[str], region: Optional[str] = None) -> str:
    """Return the international format of a phone number, or empty when invalid."""
    text = clean_unicode_text(raw)
    if not text:
        return ""
    text = re.sub(r"^(phone|tel|電話|電話號碼|電話番号|전화)\s*[:：]?\s*", "", text, flags=re.IGNORECASE)
    if PRICE_RANGE_PATTERN.match(text):
        return ""
    digits = re.sub(r"\D", "", text)
    if len(digits) < 7:
        return ""

    try:
        parsed = phonenumbers.parse(text, region or "US")
    except phonenumbers.NumberParseException:
        return ""
    if not phonenumbers.is_possible_number(parsed):
        return ""
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.INTERNATIONAL)


def _address_country(address: str, locale: Optional[str]) -> Optional[str]:
    if "Japan" in address or "日本" in address:
        return "JP"
    if "Korea" in address or "대한민국" in address:
        return "KR"
    if "Taiwan" in address or "台灣" in address or "臺灣" in address:
        return "TW"
    return region_from_locale(locale)


def format_postal_code(address: str, locale: Optional[str] = None) -> str:
    """Apply per-country postal code conventions without reordering other text."""
    if not address:
        return ""
    country = _address_country(address, locale)

    if country == "JP":
        return re.sub(r"〒\s*(\d{3})-?(\d{4})", r"〒\1-\2", address, count=1)

    if country == "KR":
        match = re.search(r"(?<!\d)(\d{5})(?!\d)", address)
        if match:
            postal = match.group(1)
            if match.start() > len(address) * 0.8 and not address.startswith(postal):
                remainder = (address[: match.start()] + address[match.end():]).strip()
                remainder = re.sub(r",\s*,", ",", remainder).strip(" ,")
                return f"{postal} {remainder}"

    return address


def clean_address(text: Optional[str]) -> str:
    cleaned = clean_unicode_text(text)
    if RATING_WITH_REVIEWS_PATTERN.match(cleaned):
        return ""
    cleaned = _ADDRESS_LABEL.sub("", cleaned)
    cleaned = _ADDRESS_HOURS_TAIL.sub("", cleaned).strip(" ·,")
    cleaned = _CJK_GAP.sub("", cleaned)
    if len(cleaned) < 5 or RATING_PATTERN.match(cleaned) or NUMERIC_ONLY_PATTERN.match(cleaned):
        return ""
    return cleaned


def validate_address(text: Optional[str], locale: Optional[str] = None) -> str:
    return clean_address(format_postal_code(_ADDRESS_LABEL.sub("", clean_unicode_text(text)), locale))


def clean_website_url(url: Optional[str]) -> str:
    if not url:
        return ""
    raw = url.strip()
    if not raw:
        return ""

    parsed = urlparse(raw if "://" in raw else f"https://{raw}")
    if not parsed.netloc or "." not in parsed.netloc:
        return ""
    host = parsed.netloc.lower()
    if host == "facebook.com":
        host = "www.facebook.com"
    path = parsed.path.rstrip("/")
    return urlunparse((parsed.scheme or "https", host, path, "", "", ""))


def validate_email(text: Optional[str]) -> bool:
    return bool(text) and bool(EMAIL_FULL_REGEX.match(text.strip()))


def extract_emails(text: Optional[str]) -> List[str]:
    """Return unique emails discovered in a text blob."""
    candidates = {match.group(0).lower() for match in EMAIL_REGEX.finditer(text or "")}
    return sorted(candidates)


def clean_business_type(text: Optional[str]) -> str:
    cleaned = clean_unicode_text(text)
    if not cleaned or len(cleaned) > 60:
        return ""
    if cleaned.lower() in INTERFACE_CHROME:
        return ""
    if NUMERIC_ONLY_PATTERN.match(cleaned) or is_listing_noise(cleaned):
        return ""
    return cleaned


def extract_price_level(text: Optional[str]) -> str:
    cleaned = clean_unicode_text(text)
    if not cleaned:
        return ""
    match = _PRICE_SYMBOLS.search(cleaned)
    if match and not re.search(r"\d", cleaned):
        return match.group(0)

    lowered = cleaned.lower()
    if "inexpensive" in lowered or "cheap" in lowered:
        return "$"
    if "moderate" in lowered:
        return "$$"
    if "very expensive" in lowered:
        return "$$$$"
    if "expensive" in lowered:
        return "$$$"
    return ""


def is_price_symbol_run(text: Optional[str]) -> bool:
    return bool(_REPEATED_SYMBOL.match(clean_unicode_text(text)))


def clean_business_hours(text: Optional[str]) -> str:
    cleaned = _HOURS_CHROME.sub("", clean_unicode_text(text)).strip()
    cleaned = re.sub(r"[,;]\s*$", "", cleaned).strip()
    if len(cleaned) < 5 or re.fullmatch(r"[\u0080-\uFFFF]+", cleaned):
        return ""
    return cleaned


def _day_index(day: str) -> Optional[int]:
    key = clean_unicode_text(day).lower().rstrip(".:：")
    return _DAY_INDEX.get(key)


def order_hours(raw: Mapping[str, str]) -> List[str]:
    """Render a day→hours mapping as ``"day: range"`` strings in Monday-first order."""
    known: Dict[int, str] = {}
    unknown: List[str] = []
    for day, value in raw.items():
        day_clean = clean_unicode_text(day)
        value_clean = clean_unicode_text(value)
        if not day_clean or not value_clean:
            continue
        entry = f"{day_clean}: {value_clean}"
        index = _day_index(day_clean)
        if index is None or index in known:
            unknown.append(entry)
        else:
            known[index] = entry
    return [known[index] for index in sorted(known)] + unknown


def is_day_name(text: Optional[str]) -> bool:
    return bool(text) and _day_index(text) is not None
