from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Literal, Mapping


FieldKind = Literal["text", "number", "date"]


class CanonicalField(str, Enum):
    MLS = "mls"
    ADDRESS = "address"
    CITY = "city"
    STATE = "state"
    ZIP = "zip"
    PRICE = "price"
    BEDS = "beds"
    BATHS = "baths"
    SQFT = "sqft"
    YEAR = "year"
    STATUS = "status"
    ACTIVE_DATE = "activeDate"
    TIMEZONE = "timezone"
    DESCRIPTION = "description"
    NOTES = "notes"
    PHOTO = "photo"

    @property
    def attr(self) -> str:
        """Attribute name on CanonicalValues."""
        return "active_date" if self is CanonicalField.ACTIVE_DATE else self.value


def _rx(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


@dataclass(frozen=True)
class FieldSpec:
    """
    Lookup tables for one canonical field.

    - aliases / fuzzy: used when resolving a value out of raw records
    - priority / matchers: used when classifying arbitrary keys into the
      field's group (extras adoption, mirroring, editor de-duplication)

    A field without matchers does not form a group.
    """
    kind: FieldKind
    aliases: tuple[str, ...]
    fuzzy: tuple[re.Pattern[str], ...] = ()
    priority: tuple[str, ...] = ()
    matchers: tuple[re.Pattern[str], ...] = ()

    @property
    def numeric(self) -> bool:
        return self.kind == "number"

    @property
    def grouped(self) -> bool:
        return bool(self.matchers)


@dataclass(frozen=True)
class FieldGroupModel:
    """
    Immutable alias/pattern tables shared by the resolver, the extras
    synchronizer and the admin-key visibility filter.
    """
    specs: Mapping[CanonicalField, FieldSpec]
    # Order in which groups are tried when a key matches more than one.
    group_order: tuple[CanonicalField, ...]
    # Normalized keys the free-form editor never shows (edited via the core form).
    editor_hidden_keys: frozenset[str]
    # field -> (canonical spelling, retired spelling)
    retired_aliases: Mapping[CanonicalField, tuple[str, str]]

    def __post_init__(self) -> None:
        missing = [f.value for f in CanonicalField if f not in self.specs]
        if missing:
            raise ValueError(f"FieldGroupModel is missing specs for: {', '.join(missing)}")
        for f in self.group_order:
            if not self.specs[f].grouped:
                raise ValueError(f"group_order lists {f.value} but it has no matchers")
        object.__setattr__(self, "specs", MappingProxyType(dict(self.specs)))
        object.__setattr__(self, "retired_aliases", MappingProxyType(dict(self.retired_aliases)))

    def spec(self, field: CanonicalField) -> FieldSpec:
        return self.specs[field]

    def is_numeric(self, field: CanonicalField) -> bool:
        return self.specs[field].numeric

    def key_belongs_to_group(self, key: str, field: CanonicalField) -> bool:
        return any(rx.search(str(key)) for rx in self.specs[field].matchers)

    def group_for_key(self, key: str) -> CanonicalField | None:
        for field in self.group_order:
            if self.key_belongs_to_group(key, field):
                return field
        return None


DEFAULT_FIELD_GROUPS = FieldGroupModel(
    specs={
        CanonicalField.MLS: FieldSpec(
            kind="text",
            aliases=("mls", "MLS", "mlsNumber", "MlsNumber", "ListingId", "ListingID", "MLSNumber"),
            fuzzy=_rx(r"mls", r"listing\.?id", r"mlsnumber"),
        ),
        CanonicalField.ADDRESS: FieldSpec(
            kind="text",
            aliases=("address", "Address", "StreetAddress", "StreetNumberNumeric", "StreetName", "FullAddress"),
            fuzzy=_rx(r"address", r"street"),
            priority=("FullAddress", "StreetAddress", "address", "StreetName"),
            matchers=_rx(r"address", r"streetaddress", r"streetname", r"fulladdress"),
        ),
        CanonicalField.CITY: FieldSpec(
            kind="text",
            aliases=("city", "City", "Town"),
            fuzzy=_rx(r"city"),
            priority=("City", "city"),
            matchers=_rx(r"city"),
        ),
        CanonicalField.STATE: FieldSpec(
            kind="text",
            aliases=("state", "State", "Province"),
            fuzzy=_rx(r"state", r"province"),
            priority=("State", "Province", "state", "province"),
            matchers=_rx(r"state", r"province"),
        ),
        CanonicalField.ZIP: FieldSpec(
            kind="text",
            aliases=("zip", "Zip", "postalCode", "PostalCode", "ZipCode", "ParcelZip"),
            fuzzy=_rx(r"zip", r"postal"),
            priority=("PostalCode", "ZipCode", "zip", "postalCode", "ParcelZip"),
            matchers=_rx(r"zip", r"postalcode", r"parcelzip"),
        ),
        CanonicalField.PRICE: FieldSpec(
            kind="number",
            aliases=("price", "listPrice", "ListPrice", "ListPriceOriginal", "OriginalListPrice", "CurrentPrice"),
            fuzzy=_rx(r"price", r"list\.?price", r"current\.?price"),
            priority=("ListPrice", "CurrentPrice", "price", "listPrice", "OriginalListPrice"),
            matchers=_rx(r"price", r"listprice", r"currentprice", r"originallistprice"),
        ),
        CanonicalField.BEDS: FieldSpec(
            kind="number",
            aliases=(
                "TotalBedrooms",
                "BedroomsTotal",
                "Bedrooms",
                "BedsTotal",
                "BedroomsTotalInteger",
                "beds",
                "bedrooms",
            ),
            fuzzy=_rx(r"beds?", r"bedrooms?", r"totalbedrooms?"),
            priority=(
                "TotalBedrooms",
                "BedroomsTotal",
                "BedroomsTotalInteger",
                "BedsTotal",
                "Bedrooms",
                "beds",
                "bedrooms",
            ),
            matchers=_rx(r"totalbedrooms", r"bedroomstotal", r"bedroomstotalinteger", r"beds"),
        ),
        CanonicalField.BATHS: FieldSpec(
            kind="number",
            aliases=(
                "totalBaths",
                "BathroomsTotalInteger",
                "FullBaths",
                "BathTotal",
                "bathrooms",
                "baths",
                "TotalFullBaths",
            ),
            fuzzy=_rx(r"baths?", r"bathrooms?", r"full\b.*bath"),
            priority=("totalBaths", "BathroomsTotalInteger", "bathrooms", "baths", "BathTotal"),
            matchers=_rx(
                r"(^|[^A-Za-z])totalbaths([^A-Za-z]|$)",
                r"bathroomstotalinteger",
                r"(^|[^A-Za-z])baths([^A-Za-z]|$)",
                r"(^|[^A-Za-z])bathrooms([^A-Za-z]|$)",
                r"(^|[^A-Za-z])bathtotal([^A-Za-z]|$)",
            ),
        ),
        CanonicalField.SQFT: FieldSpec(
            kind="number",
            aliases=(
                "SqFtTotal",
                "TotalSqFt",
                "BuildingAreaTotal",
                "squareFeet",
                "LivingArea",
                "livingArea",
                "sqft",
                "SqFtMainFloor",
                "AboveGradeFinishedArea",
            ),
            fuzzy=_rx(r"sq.?ft", r"square.?feet", r"living.?area", r"building.?area"),
            priority=(
                "SqFtTotal",
                "TotalSqFt",
                "BuildingAreaTotal",
                "squareFeet",
                "LivingArea",
                "livingArea",
                "sqft",
                "SqFtMainFloor",
                "AboveGradeFinishedArea",
            ),
            matchers=_rx(
                r"sqfttotal",
                r"totalsqft",
                r"buildingareatotal",
                r"squarefeet",
                r"livingarea",
                r"sqft",
                r"sqftmainfloor",
            ),
        ),
        CanonicalField.YEAR: FieldSpec(
            kind="number",
            aliases=("YearBuilt", "YearBuiltDetails", "yearBuilt", "year"),
            fuzzy=_rx(r"year.?built", r"built.?year"),
            priority=("YearBuilt", "YearBuiltDetails", "yearBuilt", "year"),
            matchers=_rx(r"yearbuilt", r"yearbuiltdetails", r"year"),
        ),
        CanonicalField.STATUS: FieldSpec(
            kind="text",
            aliases=("status", "ListingStatus", "Status", "StandardStatus"),
            fuzzy=_rx(r"status", r"standardstatus", r"listingstatus"),
            priority=("StandardStatus", "ListingStatus", "status"),
            matchers=_rx(r"status", r"standardstatus", r"listingstatus"),
        ),
        CanonicalField.ACTIVE_DATE: FieldSpec(
            kind="date",
            aliases=("activeDate", "listDate", "ListDate", "DateListed", "DateActive", "ListingDate"),
            fuzzy=_rx(r"active.?date", r"list.?date", r"date.?listed"),
        ),
        CanonicalField.TIMEZONE: FieldSpec(
            kind="text",
            aliases=("timezone", "TimeZone", "TimeZoneLocal"),
            fuzzy=_rx(r"time.?zone"),
        ),
        CanonicalField.DESCRIPTION: FieldSpec(
            kind="text",
            aliases=(
                "publicRemarks",
                "remarks",
                "description",
                "PublicRemarks",
                "PropertyDescription",
                "RemarksPublic",
                "Remarks",
            ),
            fuzzy=_rx(r"remarks?", r"description"),
            priority=("PublicRemarks", "RemarksPublic", "remarks", "description", "publicRemarks"),
            matchers=_rx(r"remarks", r"description", r"publicremarks"),
        ),
        CanonicalField.NOTES: FieldSpec(
            kind="text",
            aliases=("agentNotes", "AgentNotes", "PrivateRemarks"),
            fuzzy=_rx(r"agent.?notes?", r"private.?remarks?"),
        ),
        CanonicalField.PHOTO: FieldSpec(
            kind="text",
            aliases=("PrimaryPhoto", "photo", "primaryPhoto", "PhotoUrl", "MainPhotoUrl", "mainPhotoUrl", "photoUrl"),
            fuzzy=_rx(r"photo", r"image.?url"),
            priority=("PrimaryPhoto", "PhotoUrl", "photo", "primaryPhoto", "mainPhotoUrl", "MainPhotoUrl", "photoUrl"),
            matchers=_rx(r"photo", r"image.?url"),
        ),
    },
    group_order=(
        CanonicalField.PRICE,
        CanonicalField.BEDS,
        CanonicalField.BATHS,
        CanonicalField.SQFT,
        CanonicalField.YEAR,
        CanonicalField.STATUS,
        CanonicalField.DESCRIPTION,
        CanonicalField.PHOTO,
        CanonicalField.ADDRESS,
        CanonicalField.CITY,
        CanonicalField.STATE,
        CanonicalField.ZIP,
    ),
    editor_hidden_keys=frozenset({
        "mls",
        "listingid",
        "address",
        "streetaddress",
        "city",
        "state",
        "province",
        "zip",
        "zipcode",
        "postalcode",
        "price",
        "beds",
        "baths",
        "sqft",
        "yearbuilt",
        "year",
        "status",
        "activedate",
        "listdate",
        "datelisted",
        "dateactive",
        "listingdate",
        "timezone",
        "publicremarks",
        "remarks",
        "description",
        "agentnotes",
        "primaryphoto",
        "photo",
        "photourl",
        "mainphotourl",
    }),
    retired_aliases={
        CanonicalField.BEDS: ("TotalBedrooms", "bedrooms"),
        CanonicalField.SQFT: ("SqFtTotal", "squareFeet"),
    },
)
