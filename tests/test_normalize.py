import math

import pytest

from maps_scraper.etl import normalize


@pytest.mark.parametrize(
    "raw, expected",
    [(4.567, 4.6), (5.5, 5.0), (-1, 0.0), ("abc", 0.0), ("4,5", 4.5), ("4.3 stars", 4.3), (None, 0.0), (math.nan, 0.0)],
)
def test_normalize_rating(raw, expected):
    assert normalize.normalize_rating(raw) == expected


def test_normalize_rating_is_idempotent_and_bounded():
    for raw in (4.567, 5.5, -1, "abc", "3,96", 0.04, 7, "4.45", "Rated 4.8 out of 5"):
        once = normalize.normalize_rating(raw)
        assert normalize.normalize_rating(once) == once
        assert 0.0 <= once <= 5.0


@pytest.mark.parametrize(
    "raw, expected",
    [("1,234", 1234), ("(200)", 200), ("1.2K", 1200), ("3M", 3_000_000), (-5, 0), (None, 0), ("", 0), (42, 42)],
)
def test_normalize_review_count(raw, expected):
    assert normalize.normalize_review_count(raw) == expected


def test_clean_phone_number_formats_international():
    assert normalize.clean_phone_number("(02) 2345-6789", "TW") == "+886 2 2345 6789"
    assert normalize.clean_phone_number("0912-345-678", "TW") == "+886 912 345 678"
    assert normalize.clean_phone_number("Phone: +1 415-555-0132") == "+1 415-555-0132"


@pytest.mark.parametrize("raw", ["200-400", "$10-20", "12345", "", None, "call us"])
def test_clean_phone_number_rejects_non_numbers(raw):
    assert normalize.clean_phone_number(raw, "US") == ""


def test_clean_address_collapses_cjk_spacing():
    assert normalize.clean_address("  台北市  信義區  信義路  ") == "台北市信義區信義路"


@pytest.mark.parametrize("raw", ["4.5(200)", "4.5 (2,000)", "4.8 (12)", "12", "Rd."])
def test_clean_address_rejects_rating_and_short_text(raw):
    assert normalize.clean_address(raw) == ""


def test_clean_address_strips_label_and_hours_tail():
    assert normalize.clean_address("Address: 123 Main St, Springfield ⋅ Opens 9 AM") == "123 Main St, Springfield"
    assert normalize.clean_address("100 Market St Closes 10 PM") == "100 Market St"


def test_format_postal_code_japan():
    assert normalize.format_postal_code("〒1000005 東京都千代田区丸の内", "ja") == "〒100-0005 東京都千代田区丸の内"


def test_format_postal_code_korea_moves_trailing_code_to_front():
    address = "대한민국 서울특별시 강남구 테헤란로 152 06236"

    assert normalize.format_postal_code(address, "ko") == "06236 대한민국 서울특별시 강남구 테헤란로 152"


def test_format_postal_code_korea_keeps_code_outside_trailing_segment():
    leading = "06236 서울특별시 강남구 테헤란로 152"
    middle = "서울 06236 강남구 테헤란로 152 빌딩 3층"

    assert normalize.format_postal_code(leading, "ko") == leading
    assert normalize.format_postal_code(middle, "ko") == middle


def test_format_postal_code_taiwan_preserves_order():
    address = "110台北市信義區信義路五段7號"

    assert normalize.format_postal_code(address, "zh-TW") == address


def test_validate_address_applies_postal_rules_then_cleaning():
    cleaned = normalize.validate_address("Address: 〒1000005 東京都千代田区丸の内1丁目", "ja")

    assert cleaned == "〒100-0005 東京都千代田区丸の内1丁目"


def test_clean_address_keeps_spacing_between_digits_and_cjk():
    assert normalize.validate_address("〒150-0002 東京都渋谷区渋谷2丁目", "ja") == "〒150-0002 東京都渋谷区渋谷2丁目"
    assert normalize.clean_address("台北市中正區 100 重慶南路一段 122 號") == "台北市中正區 100 重慶南路一段 122 號"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("www.example.com", "https://www.example.com"),
        ("https://example.com/page?utm_source=maps#top", "https://example.com/page"),
        ("facebook.com/page123", "https://www.facebook.com/page123"),
        ("http://shop.example.org/", "http://shop.example.org"),
        ("", ""),
        ("localhost", ""),
    ],
)
def test_clean_website_url(raw, expected):
    assert normalize.clean_website_url(raw) == expected


def test_extract_and_validate_emails():
    found = normalize.extract_emails("Contact Info@Shop.com or sales@shop.com, again info@shop.com")

    assert found == ["info@shop.com", "sales@shop.com"]
    assert normalize.validate_email("a.b+c@mail.example.co")
    assert not normalize.validate_email("not-an-email@")
    assert not normalize.validate_email(None)


@pytest.mark.parametrize("raw", ["4.5(200)", "$$$", "Collapse side panel", "123", "Open ⋅ Closes 10 PM", "x" * 61])
def test_clean_business_type_rejects_noise(raw):
    assert normalize.clean_business_type(raw) == ""


def test_clean_business_type_keeps_categories():
    assert normalize.clean_business_type("  Coffee   shop ") == "Coffee shop"
    assert normalize.clean_business_type("咖啡廳") == "咖啡廳"


@pytest.mark.parametrize(
    "raw, expected",
    [("$$", "$$"), ("Price: Moderate", "$$"), ("Inexpensive", "$"), ("Very expensive", "$$$$"), ("Expensive", "$$$"), ("$10–20", ""), ("", "")],
)
def test_extract_price_level(raw, expected):
    assert normalize.extract_price_level(raw) == expected


def test_is_price_symbol_run():
    assert normalize.is_price_symbol_run("$$$")
    assert normalize.is_price_symbol_run("¥")
    assert not normalize.is_price_symbol_run("$$$$$")
    assert not normalize.is_price_symbol_run("$5")
    assert not normalize.is_price_symbol_run("$€")


def test_clean_business_hours_removes_chrome():
    assert normalize.clean_business_hours("Copy open hours") == ""
    assert normalize.clean_business_hours("Monday 9 AM–5 PM, Hide open hours for the week") == "Monday 9 AM–5 PM"


def test_order_hours_is_monday_first_and_keeps_unknown_days_last():
    raw = {"Sunday": "Closed", "Holiday": "Varies", "Monday": "9 AM–5 PM", "Tuesday": "9 AM–5 PM"}

    assert normalize.order_hours(raw) == [
        "Monday: 9 AM–5 PM",
        "Tuesday: 9 AM–5 PM",
        "Sunday: Closed",
        "Holiday: Varies",
    ]


def test_order_hours_understands_cjk_day_names():
    raw = {"星期日": "休息", "星期二": "09:00–18:00", "星期一": "09:00–18:00"}

    assert [entry.split(":")[0] for entry in normalize.order_hours(raw)] == ["星期一", "星期二", "星期日"]


def test_is_day_name():
    assert normalize.is_day_name("Wednesday")
    assert normalize.is_day_name("水曜日")
    assert normalize.is_day_name("목요일")
    assert not normalize.is_day_name("Holiday")
    assert not normalize.is_day_name("")


@pytest.mark.parametrize("text", ["4.5", "(1,234)", "$$", "Open ⋅ Closes 10 PM", "·", "營業中", ""])
def test_is_listing_noise(text):
    assert normalize.is_listing_noise(text)


def test_is_listing_noise_keeps_real_text():
    assert not normalize.is_listing_noise("Coffee shop")
    assert not normalize.is_listing_noise("123 Main St")


def test_clean_unicode_text_strips_invisible_characters():
    assert normalize.clean_unicode_text("Café\u200b  Roma\t\n") == "Café Roma"
    assert normalize.clean_unicode_text(None) == ""


@pytest.mark.parametrize(
    "locale, expected",
    [("zh-TW", "TW"), ("ja", "JP"), ("ko", "KR"), ("en", "US"), ("pt_BR", "BR"), (None, None), ("xx", None)],
)
def test_region_from_locale(locale, expected):
    assert normalize.region_from_locale(locale) == expected
