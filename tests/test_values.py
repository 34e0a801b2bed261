import pytest

from listingsync.canonical.fields import DEFAULT_FIELD_GROUPS, CanonicalField, FieldGroupModel
from listingsync.canonical.values import ABSENT, CanonicalValues, Numeric, coerce_number, unwrap


@pytest.mark.parametrize("raw,expected", [
    ("$350,000", 350000),
    ("1,800", 1800),
    ("2.5", 2.5),
    (3, 3),
    (4.0, 4),
    ("abc", None),
    ("", None),
    (True, None),
    (float("inf"), None),
    ({"a": 1}, None),
    ([1], None),
])
def test_coerce_number(raw, expected):
    assert coerce_number(raw) == expected


def test_integral_results_are_ints():
    assert isinstance(coerce_number("1,234.0"), int)


def test_absent_is_falsy_singleton():
    assert not ABSENT
    assert unwrap(ABSENT) is None
    assert unwrap(Numeric(3)) == 3


def test_canonical_values_coerce_on_construction_and_set():
    v = CanonicalValues(price="$1,000", zip=2134, activeDate="2024-01-02")
    assert v.price == 1000
    assert v.zip == "2134"
    assert v.active_date == "2024-01-02"

    v.set(CanonicalField.BEDS, "3")
    v.set(CanonicalField.STATUS, "Active")
    assert v.get(CanonicalField.BEDS) == 3
    assert v.to_record() == {
        "zip": "2134",
        "price": 1000,
        "beds": 3,
        "status": "Active",
        "activeDate": "2024-01-02",
    }


def test_blank_numeric_becomes_none():
    v = CanonicalValues(price="  ")
    assert v.price is None
    assert v.is_blank(CanonicalField.PRICE)


def test_field_model_is_read_only_and_validated():
    with pytest.raises(TypeError):
        DEFAULT_FIELD_GROUPS.specs[CanonicalField.PRICE] = None  # type: ignore[index]

    with pytest.raises(ValueError):
        FieldGroupModel(
            specs={},
            group_order=(),
            editor_hidden_keys=frozenset(),
            retired_aliases={},
        )


def test_group_membership():
    m = DEFAULT_FIELD_GROUPS
    assert m.group_for_key("CurrentPrice") is CanonicalField.PRICE
    assert m.group_for_key("BedroomsTotal") is CanonicalField.BEDS
    assert m.group_for_key("bathrooms") is CanonicalField.BATHS
    assert m.group_for_key("TotalFullBaths") is None
    assert m.group_for_key("Garage") is None
