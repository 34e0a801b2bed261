import pytest

from listingsync.canonical.fields import DEFAULT_FIELD_GROUPS, CanonicalField
from listingsync.canonical.values import ABSENT, Numeric, Text
from listingsync.services.resolver import AliasResolver


@pytest.fixture
def resolver():
    return AliasResolver(DEFAULT_FIELD_GROUPS)


def test_mls_style_row_resolves_numeric_fields(resolver):
    row = {"TotalBedrooms": "3", "SqFtTotal": "1,800", "ListPrice": "$350,000"}
    assert resolver.resolve([row], CanonicalField.BEDS) == Numeric(3)
    assert resolver.resolve([row], CanonicalField.SQFT) == Numeric(1800)
    assert resolver.resolve([row], CanonicalField.PRICE) == Numeric(350000)


@pytest.mark.parametrize("field", [CanonicalField.BEDS, CanonicalField.SQFT, CanonicalField.PRICE, CanonicalField.YEAR])
def test_every_alias_spelling_is_coerced(resolver, field):
    for alias in DEFAULT_FIELD_GROUPS.spec(field).aliases:
        assert resolver.resolve([{alias: "1,234"}], field) == Numeric(1234, via="alias"), alias


def test_higher_priority_fuzzy_beats_lower_priority_alias(resolver):
    sources = [{"numBeds": "5"}, {"TotalBedrooms": "3"}]
    assert resolver.resolve(sources, CanonicalField.BEDS) == Numeric(5, via="fuzzy")


def test_fuzzy_matches_nested_keys(resolver):
    sources = [{"facts": {"living_area": "2,000 sqft"}}]
    assert resolver.resolve(sources, CanonicalField.SQFT) == Numeric(2000, via="fuzzy")


def test_uncoercible_numeric_is_skipped(resolver):
    sources = [{"price": "Call"}, {"ListPrice": "100"}]
    assert resolver.resolve(sources, CanonicalField.PRICE) == Numeric(100)


def test_text_fields_are_not_coerced(resolver):
    assert resolver.resolve([{"StandardStatus": "Active"}], CanonicalField.STATUS) == Text("Active")
    assert resolver.resolve([{"PostalCode": "02134"}], CanonicalField.ZIP) == Text("02134")


def test_numeric_scan_is_last_resort_and_tagged(resolver):
    sources = [{"a": 0, "b": "-3", "c": "none here"}, {"d": "12"}]
    assert resolver.resolve(sources, CanonicalField.PRICE) == Numeric(12, via="scan")


def test_numeric_scan_can_be_disabled():
    sources = [{"foo": 7}]
    assert AliasResolver().resolve(sources, CanonicalField.PRICE, allow_scan=False) is ABSENT
    assert AliasResolver(numeric_scan_fallback=False).resolve(sources, CanonicalField.PRICE) is ABSENT


def test_missing_text_field_is_absent(resolver):
    assert resolver.resolve([{}, None], CanonicalField.CITY) is ABSENT


def test_resolve_all(resolver):
    sources = [{"City": "Austin", "ListPrice": "500000", "listDate": "2024-01-02"}]
    values = resolver.resolve_all(sources, allow_scan=False)
    assert values.city == "Austin"
    assert values.price == 500000
    assert values.active_date == "2024-01-02"
    assert values.beds is None
