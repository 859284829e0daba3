"""
Per-source-family parsing and repair rules.

Each exporter ships its own layout: header band position, footer shape,
delimiter, column renames between report versions, overflow-prone zones and
the columns that must hold numbers.  Families are plain data so a new or
changed layout can also be supplied as a JSON document (see load_family).
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from customs_doctor.heal_modules.pipeline import NUMERIC_MODES
from customs_doctor.heal_modules.predicates import (
    COUNTRY_CODE,
    EMPTY,
    HS_CODE,
    LONG_TEXT,
    NUMERIC,
    POSTCODE,
    PROCEDURE_CODE,
    SHORT_TEXT,
    Predicate,
)
from customs_doctor.heal_modules.shared import FamilyConfigError
from customs_doctor.heal_modules.zones import Check, GapRule, Slot, Zone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnCheck:
    column: int
    label: str
    predicate: Predicate
    zone: str | None = None
    note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "column": self.column,
            "label": self.label,
            "predicate": self.predicate.to_dict(),
            "zone": self.zone,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ColumnCheck":
        try:
            return cls(
                column=int(payload["column"]),
                label=str(payload["label"]),
                predicate=Predicate.from_dict(payload["predicate"]),
                zone=payload.get("zone"),
                note=str(payload.get("note") or ""),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise FamilyConfigError(f"Malformed column check: {exc}") from exc


@dataclass(frozen=True)
class SourceFamily:
    id: str
    label: str
    header_rows: int = 1
    header_start_row: int = 0
    data_start_row: int = 1
    min_filled_cells: int = 2
    csv_delimiter: str | None = None
    sheet_file_token: str | None = None
    sheet_pattern: str | None = None
    synonyms: dict[str, str] = field(default_factory=dict)
    side_channel_columns: tuple[str, ...] = ()
    zones: tuple[Zone, ...] = ()
    numeric_columns: tuple[int, ...] = ()
    numeric_headers: tuple[str, ...] = ()
    date_headers: tuple[str, ...] = ()
    datetime_headers: tuple[str, ...] = ()
    time_headers: tuple[str, ...] = ()
    numeric_mode: str = "leading"
    strip_newlines: bool = False
    post_checks: tuple[ColumnCheck, ...] = ()
    max_width: int | None = None

    def __post_init__(self):
        if self.numeric_mode not in NUMERIC_MODES:
            raise FamilyConfigError(
                f"Invalid numeric_mode '{self.numeric_mode}'. Expected one of: {', '.join(NUMERIC_MODES)}"
            )
        if self.header_rows < 1:
            raise FamilyConfigError(f"{self.id}: header_rows must be at least 1")
        if self.data_start_row < self.header_start_row + self.header_rows:
            raise FamilyConfigError(f"{self.id}: data_start_row overlaps the header band")
        if self.sheet_pattern:
            try:
                re.compile(self.sheet_pattern)
            except re.error as exc:
                raise FamilyConfigError(f"{self.id}: invalid sheet_pattern: {exc}") from exc

    def is_footer_row(self, row: list | None) -> bool:
        """Blank, short and summary rows ('Total: 12') carry fewer filled cells than real records."""
        if not row or len(row) < self.min_filled_cells:
            return True
        filled = sum(1 for value in row if value is not None and value != "")
        return filled < self.min_filled_cells

    def select_sheet(self, sheet_names: list[str], file_name: str) -> str | None:
        if not sheet_names:
            return None
        if not self.sheet_pattern:
            return sheet_names[0]
        if self.sheet_file_token and self.sheet_file_token.lower() not in (file_name or "").lower():
            return sheet_names[0]
        pattern = re.compile(self.sheet_pattern, re.IGNORECASE)
        for name in sheet_names:
            if pattern.search(name):
                return name
        return sheet_names[0]


def address_zone(name: str, start: int) -> Zone:
    """[Name, Address, Town, Postcode, Country]: an overflowing street pushes the country right."""
    return Zone(
        name=name,
        start=start,
        slots=(
            Slot("name", LONG_TEXT),
            Slot("address", LONG_TEXT),
            Slot("town", SHORT_TEXT),
            Slot("postcode", POSTCODE),
            Slot("country", COUNTRY_CODE),
        ),
        overflow_slot="address",
        anchor="country",
        max_shift=2,
        # +1: the unshifted postcode cell must not hold a country code.
        # +2: the cell between postcode and the moved country must not either.
        shift_checks=(
            (
                Check("postcode", COUNTRY_CODE, negate=True, fixed=True, only_at_shift=1),
                Check("postcode", COUNTRY_CODE, negate=True, only_at_shift=2),
            ),
        ),
        presence_slots=("name", "address", "town"),
    )


DELIVERY_ZONE = Zone(
    name="Mid-row",
    start=32,
    slots=(
        Slot("delivery_location", SHORT_TEXT),
        Slot("freight", NUMERIC),
        Slot("weight", NUMERIC),
    ),
    overflow_slot="delivery_location",
    anchor="freight",
    max_shift=3,
    shift_checks=((Check("weight", NUMERIC, allow_empty=True),),),
    presence_slots=("delivery_location",),
    empty_anchor_means_gap=True,
    scan_requires_text=True,
    anchor_scan_allows_empty=True,
    gap=GapRule(span=2, require_overflow_text=True),
)

# Procedure code 300 rows legitimately carry no country of origin.
_COUNTRY_AND_PROCEDURE = (
    Check("origin", COUNTRY_CODE, allow_empty=True),
    Check("procedure", PROCEDURE_CODE),
)
_NO_COUNTRY = (
    Check("origin", EMPTY),
    Check("preference", PROCEDURE_CODE),
)

GOODS_ZONE = Zone(
    name="Goods",
    start=109,
    slots=(
        Slot("description", LONG_TEXT),
        Slot("hs_code", HS_CODE),
        Slot("origin", COUNTRY_CODE),
        Slot("preference", PROCEDURE_CODE),
        Slot("procedure", PROCEDURE_CODE),
    ),
    overflow_slot="description",
    anchor="hs_code",
    max_shift=8,
    aligned_checks=(_COUNTRY_AND_PROCEDURE,),
    shift_checks=(_COUNTRY_AND_PROCEDURE, (Check("origin", COUNTRY_CODE),)),
    exceptions=(_NO_COUNTRY,),
    gap=GapRule(span=1),
    fallback_window=8,
    join_separator=" ",
    strip_fragments=True,
    skip_date_placeholders=True,
)

DHL = SourceFamily(
    id="DHL",
    label="DHL Express",
    header_rows=2,
    header_start_row=0,
    data_start_row=2,
    min_filled_cells=3,
    # The seller zone (15-19) is always empty in DHL exports and is never repaired.
    zones=(address_zone("Shipper", 20), address_zone("Consignee", 26), DELIVERY_ZONE, GOODS_ZONE),
    numeric_columns=(33, 34, 67, 71, 75, 76, 77, 116, 117, 119, 120, 121, 123, 124, 125, 127, 128),
    numeric_mode="full",
    post_checks=(
        ColumnCheck(110, "HS Code", HS_CODE, zone="Goods", note="still invalid after repair, manual review"),
        ColumnCheck(24, "Shipper Country", COUNTRY_CODE, zone="Shipper", note="possible undetected shift"),
    ),
)

FEDEX = SourceFamily(
    id="FEDEX",
    label="FedEx",
    header_rows=1,
    header_start_row=13,
    data_start_row=14,
    min_filled_cells=3,
    numeric_columns=(22, 24, 27, 44, 49, 53, 60, 61, 65, 66, 67, 68, 70, 73, 85, 86, 88, 89, 90, 91),
    numeric_mode="full",
    strip_newlines=True,
    post_checks=(
        ColumnCheck(56, "TARIFNUMMER", HS_CODE, zone="HS Code"),
        ColumnCheck(21, "VERSENDUNGSLAND", COUNTRY_CODE, zone="Country"),
        ColumnCheck(57, "URSPRUNGSLAND", COUNTRY_CODE, zone="Country"),
    ),
)

KN = SourceFamily(id="KN", label="Kuehne + Nagel")

SCHENKER = SourceFamily(id="SCHENKER", label="DB Schenker")

# DSV changed its report layout during 2025 (92 -> 138 -> 158 columns).  Keys are
# the old or English air-freight names, values the current German sea names.
DSV_SYNONYMS = {
    "Registrienummer/MRN": "Registriernummer/MRN",
    "Versender EORI": "Versender CZ EORI",
    "Versender Name": "CZ Name",
    "Versender Ländercode": "CZ Ländercode",
    "Empfänger EORI": "Empfänger CN EORI",
    "Empfänger Name": "CN Name",
    "Empfänger Ländercode": "CN Ländercode",
    "Anmelder EORI": "Anmelder DT EORI",
    "Anmelder Name": "DT Name",
    "Anmelder Ländercode": "DT Ländercode",
    "Addressierte Zollstelle": "Zollstelle",
    "AufschubHZAZoll": "HZAZoll",
    "AufschubkontoZoll": "KontoZoll",
    "AufschubTextZoll": "TextZoll",
    "AufschubEORIZoll": "EORIZoll",
    "AufschubKennzeichenEigenZoll": "KennzeichenEigenZoll",
    "AufschubArtEust": "ArtEust",
    "AufschubHZAEust": "HZAEust",
    "AufschubKontoEusT": "KontoEusT",
    "AufschubTextEust": "TextEust",
    "AufschubEORIEust": "EORIEust",
    "AufschubKennzeichenEigenEust": "KennzeichenEigenEust",
    "Vorraussichtliche Zollabgabe": "Vorausstl. Zollabgabe",
    "Vorraussichtliche Zollsatzabgabe": "Vorausstl. Zollsatzabgabe",
    "Vorraussichtliche Eustabgabe": "Vorausstl. Eustabgabe",
    "Vorraussichtliche Eustsatzabgabe": "Vorausstl. Eustsatzabgabe",
    "DV1Rechnugnswährung": "Währung",
    "DV1UmrechnungsWährung": "Währung",
    "DV1Versicherungswährung": "Währung",
    "DV1Luftfrachtkostenwährung": "Währung",
    "DV1Frachtkostenwährung": "Währung",
    "DV1MaterialienWährung": "Währung",
    "Vorpapiere Registriernummer": "Vorpapiere Reg.nummer",
    # German air freight
    "Verfahren_1": "Verfahren",
    "SonderAbgabeAntidumping": "AbgabeAntidumping",
    # English air freight ("Import Report Template", 44 columns)
    "Formal Entry Number": "Registriernummer/MRN",
    "Line No": "PositionNo",
    "Importer Name": "CN Name",
    "EORI Number / Tax ID / Equivalent": "Empfänger CN EORI",
    "Entry Date \n(ddmmyy)": "Anlagedatum",
    "Port of Entry": "Zollstelle",
    "Declaration Country": "CN Ländercode",
    "Country of Origin": "Ursprung",
    "Shipping Country": "CZ Ländercode",
    "HTS Code (Tariff Number)": "Warentarifnummer",
    "Item Description": "Warenbezeichnung",
    "Invoice value": "Rechnungsbetrag",
    "Invoice currency": "Rechnungswährung",
    "Exchange Rate": "Rechnungskurs",
    "Declared Value": "Zollwert",
    "Duty Paid": "AbgabeZoll",
    "Duty Rate %": "AbgabeZollsatz",
    "VAT Value": "Eustwert",
    "VAT Paid": "AbgabeEust",
    "VAT Rate %": "AbgabeEustsatz",
    "Anti Dumping / Countervailing Duties": "AbgabeAntidumping",
    "Special Trade Program (e.g. FTA)": "Beguenstigung",
    "Supplier Name / Shipper Name": "CZ Name",
    "Custom broker company name": "DT Name",
    "Incoterms": "Liefercode",
    "Customs Quantity": "Aussenhandelstatistische Menge",
    "Unit of measurement": "Maßeinheit",
    "Net Mass (in kg)": "Eigenmasse",
    "Gross Mass (in kg)": "Rohmasse",
    "Broker Reference Number": "Bezugsnummer/LRN",
    "AWB / Bill Of Lading": "Vorpapiere Reg.nummer",
    "Customs Value currency": "Zollwertwährung",
}

# English air-freight columns with no sea-freight counterpart.
DSV_AIR_ONLY_COLUMNS = (
    "Arrival Date",
    "Invoice Number",
    "Other Fees / Taxes",
    "Transport Mode",
    "Entry Type",
    "Branch",
    "Site Name",
    "Site Number",
    "CBAM related goods ? \nY/N",
    "CBAM related goods ?\nY/N",
    "CBAM goods category *",
    "CBAM Exeption applied ? \nY/N",
    "CBAM Exeption applied ?\nY/N",
    "CBAM Type of exeption",
    "Voraus. Gesamtabgaben",
)

# Current header names; historical names reach these through DSV_SYNONYMS.
# The mis-decoded spellings show up in exports that were saved as latin-1.
DSV_NUMERIC_HEADERS = (
    "Rechnungsbetrag",
    "Rechnungskurs",
    "Gesamtgewicht",
    "Zollwert",
    "Eustwert",
    "AbgabeZoll",
    "AbgabeZollsatz",
    "AbgabeEust",
    "AbgabeEustsatz",
    "AbgabeAntidumping",
    "Eigenmasse",
    "Rohmasse",
    "Artikelpreis",
    "Statistischerwert",
    "Aussenhandelstatistische Menge",
    "Geschäftsart",
    "GeschÃ¤ftsart",
    "AnzahlPackstücke",
    "AnzahlPackstÃ¼cke",
    "KontoZoll",
    "KontoEusT",
    "Vorausstl. Zollabgabe",
    "Vorausstl. Zollsatzabgabe",
    "Vorausstl. Eustabgabe",
    "Vorausstl. Eustsatzabgabe",
    "DV1Rechnungsbetrag",
    "DV1Frachtkosten",
    "DV1Luftfrachtkosten",
    "DV1Versicherungskosten",
)
DSV_DATE_HEADERS = (
    "Anlagedatum",
    "Überlassungsdatum",
    "Ãœberlassungsdatum",
    "Ãberlassungsdatum",
    "Annahmedatum",
    "UstID-DT",
    "Unterlagendatum",
)
DSV_DATETIME_HEADERS = ("Zeitpunkt der letzten CUSTAX",)
DSV_TIME_HEADERS = ("Zeit",)

DSV = SourceFamily(
    id="DSV",
    label="DSV",
    csv_delimiter=";",
    sheet_file_token="luft",
    sheet_pattern=r"^(importzoll|hella|import report)",
    synonyms=DSV_SYNONYMS,
    side_channel_columns=DSV_AIR_ONLY_COLUMNS,
    numeric_headers=DSV_NUMERIC_HEADERS,
    date_headers=DSV_DATE_HEADERS,
    datetime_headers=DSV_DATETIME_HEADERS,
    time_headers=DSV_TIME_HEADERS,
    numeric_mode="full",
)

UPS = SourceFamily(
    id="UPS",
    label="UPS",
    numeric_columns=(5, 6, 8, 10, 11, 15, 16, 17, 19, 20, 21, 30, 31, 32, 33, 34, 35, 36, 37, 38, 39, 40, 47),
    numeric_mode="full",
    strip_newlines=True,
    post_checks=(
        ColumnCheck(28, "Zolltarifnummer", HS_CODE, zone="HS Code"),
        ColumnCheck(23, "Versendungsland", COUNTRY_CODE, zone="Country"),
        ColumnCheck(24, "Ursprungsland", COUNTRY_CODE, zone="Country"),
        ColumnCheck(42, "Land", COUNTRY_CODE, zone="Country"),
        ColumnCheck(44, "Land4", COUNTRY_CODE, zone="Country"),
    ),
    max_width=62,
)

FAMILIES: dict[str, SourceFamily] = {family.id: family for family in (DHL, FEDEX, KN, DSV, SCHENKER, UPS)}


def family_ids() -> list[str]:
    return list(FAMILIES)


def get_family(family_id: str) -> SourceFamily:
    key = (family_id or "").strip().upper()
    if key not in FAMILIES:
        raise FamilyConfigError(
            f"Unknown source family '{family_id}'. Expected one of: {', '.join(FAMILIES)}"
        )
    return FAMILIES[key]


def family_to_dict(family: SourceFamily) -> dict[str, Any]:
    return {
        "id": family.id,
        "label": family.label,
        "header_rows": family.header_rows,
        "header_start_row": family.header_start_row,
        "data_start_row": family.data_start_row,
        "min_filled_cells": family.min_filled_cells,
        "csv_delimiter": family.csv_delimiter,
        "sheet_file_token": family.sheet_file_token,
        "sheet_pattern": family.sheet_pattern,
        "synonyms": dict(family.synonyms),
        "side_channel_columns": list(family.side_channel_columns),
        "zones": [zone.to_dict() for zone in family.zones],
        "numeric_columns": list(family.numeric_columns),
        "numeric_headers": list(family.numeric_headers),
        "date_headers": list(family.date_headers),
        "datetime_headers": list(family.datetime_headers),
        "time_headers": list(family.time_headers),
        "numeric_mode": family.numeric_mode,
        "strip_newlines": family.strip_newlines,
        "post_checks": [check.to_dict() for check in family.post_checks],
        "max_width": family.max_width,
    }


def _names(payload: dict, key: str) -> tuple[str, ...]:
    value = payload.get(key) or ()
    if isinstance(value, str):
        raise FamilyConfigError(f"'{key}' must be a list of header names")
    return tuple(str(name) for name in value)


def family_from_dict(payload: Any) -> SourceFamily:
    if not isinstance(payload, dict):
        raise FamilyConfigError("Family config must be a JSON object")
    if not payload.get("id"):
        raise FamilyConfigError("Family config needs an 'id'")
    synonyms = payload.get("synonyms") or {}
    if not isinstance(synonyms, dict):
        raise FamilyConfigError("'synonyms' must be an object of old name -> new name")
    try:
        return SourceFamily(
            id=str(payload["id"]).strip().upper(),
            label=str(payload.get("label") or payload["id"]),
            header_rows=int(payload.get("header_rows", 1)),
            header_start_row=int(payload.get("header_start_row", 0)),
            data_start_row=int(payload.get("data_start_row", 1)),
            min_filled_cells=int(payload.get("min_filled_cells", 2)),
            csv_delimiter=payload.get("csv_delimiter"),
            sheet_file_token=payload.get("sheet_file_token"),
            sheet_pattern=payload.get("sheet_pattern"),
            synonyms={str(old): str(new) for old, new in synonyms.items()},
            side_channel_columns=tuple(str(name) for name in payload.get("side_channel_columns") or ()),
            zones=tuple(Zone.from_dict(item) for item in payload.get("zones") or ()),
            numeric_columns=tuple(int(col) for col in payload.get("numeric_columns") or ()),
            numeric_headers=_names(payload, "numeric_headers"),
            date_headers=_names(payload, "date_headers"),
            datetime_headers=_names(payload, "datetime_headers"),
            time_headers=_names(payload, "time_headers"),
            numeric_mode=str(payload.get("numeric_mode", "leading")),
            strip_newlines=bool(payload.get("strip_newlines", False)),
            post_checks=tuple(ColumnCheck.from_dict(item) for item in payload.get("post_checks") or ()),
            max_width=int(payload["max_width"]) if payload.get("max_width") is not None else None,
        )
    except (TypeError, ValueError) as exc:
        raise FamilyConfigError(f"Malformed family config: {exc}") from exc


def load_family(path: Path | str) -> SourceFamily:
    """Read a family definition from a JSON file shaped like family_to_dict()."""
    path = Path(path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise FamilyConfigError(f"Family config not found: {path}") from exc
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FamilyConfigError(f"Could not read family config {path}: {exc}") from exc
    family = family_from_dict(payload)
    logger.info("Loaded family %s from %s", family.id, path)
    return family
