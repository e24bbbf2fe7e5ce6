"""
Search criteria for the records portal.

The portal accepts exactly one of three search shapes. Raw request fields are
mapped onto the first shape whose required fields are all present, in the
order report number > last name + date > last name + street. Fields that
belong to other shapes are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, ClassVar, Mapping, Union

from lexis_search.core.errors import InvalidCriteria


JURISDICTION_REQUIRED = "State and jurisdiction required"
CRITERIA_REQUIRED = (
    "Provide reportNumber, or lastName with dateOfIncident, "
    "or lastName with locationStreet"
)

# snake_case field -> accepted request keys
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "report_number": ("reportNumber", "report_number"),
    "last_name": ("lastName", "last_name"),
    "date_of_incident": ("dateOfIncident", "date_of_incident"),
    "location_street": ("locationStreet", "location_street"),
    "state": ("state",),
    "jurisdiction": ("jurisdiction",),
}


class CriteriaKind(str, Enum):
    REPORT_NUMBER = "report_number"
    NAME_AND_DATE = "name_and_date"
    NAME_AND_STREET = "name_and_street"


@dataclass(frozen=True)
class ByReportNumber:
    report_number: str

    kind: ClassVar[CriteriaKind] = CriteriaKind.REPORT_NUMBER

    def form_fields(self) -> tuple[tuple[str, str], ...]:
        return (("Report Number", self.report_number),)


@dataclass(frozen=True)
class ByNameAndDate:
    last_name: str
    date_of_incident: str

    kind: ClassVar[CriteriaKind] = CriteriaKind.NAME_AND_DATE

    def form_fields(self) -> tuple[tuple[str, str], ...]:
        return (
            ("Last Name", self.last_name),
            ("Date of Incident", self.date_of_incident),
        )


@dataclass(frozen=True)
class ByNameAndStreet:
    last_name: str
    location_street: str

    kind: ClassVar[CriteriaKind] = CriteriaKind.NAME_AND_STREET

    def form_fields(self) -> tuple[tuple[str, str], ...]:
        return (
            ("Last Name", self.last_name),
            ("Location Street", self.location_street),
        )


SearchCriteria = Union[ByReportNumber, ByNameAndDate, ByNameAndStreet]

# First match wins.
CRITERIA_PRECEDENCE: tuple[type, ...] = (ByReportNumber, ByNameAndDate, ByNameAndStreet)


@dataclass(frozen=True)
class JurisdictionSelector:
    state: str
    jurisdiction: str


@dataclass(frozen=True)
class SearchRequest:
    jurisdiction: JurisdictionSelector
    criteria: SearchCriteria


def _field_value(raw: Mapping[str, Any], name: str) -> str:
    for key in FIELD_ALIASES.get(name, (name,)):
        value = raw.get(key)
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (str, int)):
            text = str(value).strip()
            if text:
                return text
    return ""


def _require_mapping(raw: Any) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        raise InvalidCriteria("Request body must be a JSON object")
    return raw


def parse_jurisdiction(raw: Mapping[str, Any]) -> JurisdictionSelector:
    raw = _require_mapping(raw)
    state = _field_value(raw, "state")
    jurisdiction = _field_value(raw, "jurisdiction")
    if not state or not jurisdiction:
        raise InvalidCriteria(JURISDICTION_REQUIRED)
    return JurisdictionSelector(state=state, jurisdiction=jurisdiction)


def parse_criteria(raw: Mapping[str, Any]) -> SearchCriteria:
    """
    Build the search criteria variant from raw request fields.

    Raises:
        InvalidCriteria: no variant has all of its required fields.
    """
    raw = _require_mapping(raw)
    for variant in CRITERIA_PRECEDENCE:
        values = {f.name: _field_value(raw, f.name) for f in fields(variant)}
        if all(values.values()):
            return variant(**values)
    raise InvalidCriteria(CRITERIA_REQUIRED)


def validate_request(raw: Mapping[str, Any]) -> SearchRequest:
    """Validate a begin/run request before any browser work happens."""
    jurisdiction = parse_jurisdiction(raw)
    criteria = parse_criteria(raw)
    return SearchRequest(jurisdiction=jurisdiction, criteria=criteria)
