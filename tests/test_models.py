import pytest

from maps_scraper.models import BusinessRecord, ExtractionConfig, ItemResult, StatsSnapshot


def test_extraction_config_requires_query_or_url():
    with pytest.raises(ValueError, match="Search query or direct URL required"):
        ExtractionConfig(query="   ")

    assert ExtractionConfig(direct_url="https://www.google.com/maps/search/pizza").query == ""


@pytest.mark.parametrize("field, value", [("max_results", 0), ("max_results", 201), ("max_scrolls", 0), ("max_scrolls", 101)])
def test_extraction_config_rejects_out_of_range_limits(field, value):
    with pytest.raises(ValueError):
        ExtractionConfig(query="pizza", **{field: value})


def test_for_region_derives_a_copy():
    base = ExtractionConfig(query="coffee shops ", max_results=120)

    north = base.for_region("North")

    assert north.query == "coffee shops North"
    assert north.max_results == 120
    assert base.query == "coffee shops "
    assert base.for_region("") is base


def test_business_record_to_dict_expands_coordinates():
    record = BusinessRecord(identity="0x1:0x2", name="Cafe", coordinates=(25.033, 121.5654), rating=4.5)

    payload = record.to_dict()

    assert payload["coordinates"] == {"latitude": 25.033, "longitude": 121.5654}
    assert payload["rating"] == 4.5
    assert payload["emails"] == []
    assert payload["email"] is None


def test_business_record_without_coordinates():
    assert BusinessRecord(identity="x", name="Cafe").to_dict()["coordinates"] is None


def test_item_result_constructors():
    ok = ItemResult.success("a", ["info@shop.com"])
    failed = ItemResult.failure("b", "timeout")

    assert ok.ok is True and ok.value == ["info@shop.com"] and ok.reason is None
    assert failed.ok is False and failed.value is None and failed.reason == "timeout"


def test_stats_snapshot_as_dict():
    snapshot = StatsSnapshot(loaded_count=10, extracted_count=8, scroll_attempts=4, emails_extracted=2)

    assert snapshot.as_dict() == {
        "loaded_count": 10,
        "extracted_count": 8,
        "scroll_attempts": 4,
        "emails_extracted": 2,
        "final_result_count": 0,
        "email_stats": {},
    }
