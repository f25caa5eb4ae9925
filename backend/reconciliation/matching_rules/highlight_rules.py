"""
Field Match Highlighting Rules

Decides whether a candidate driver is likely the same person as the
operator's selected source record (lead or scout registration).

Criteria:
- phone: digits-only comparison, exact
- name: whitespace-insensitive, case-insensitive containment (either way)
- license: trimmed, upper-cased, exact (registrations only)

A row is highlighted when ANY applicable criterion matches. A criterion
with an empty side never matches. The result is advisory: it drives
presentation only and never gates an assignment.
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional, Union

from reconciliation.models import Driver, Lead, ScoutRegistration

SourceRecord = Union[Lead, ScoutRegistration]

_NON_DIGIT = re.compile(r"\D")
_WHITESPACE = re.compile(r"\s+")


def normalize_phone(value: Optional[str]) -> str:
    return _NON_DIGIT.sub("", value or "")


def normalize_name(value: Optional[str]) -> str:
    return _WHITESPACE.sub("", value or "").lower()


def normalize_license(value: Optional[str]) -> str:
    return (value or "").strip().upper()


def phones_match(a: Optional[str], b: Optional[str]) -> bool:
    left, right = normalize_phone(a), normalize_phone(b)
    return bool(left) and bool(right) and left == right


def names_match(a: Optional[str], b: Optional[str]) -> bool:
    left, right = normalize_name(a), normalize_name(b)
    if not left or not right:
        return False
    return left in right or right in left


def licenses_match(a: Optional[str], b: Optional[str]) -> bool:
    left, right = normalize_license(a), normalize_license(b)
    return bool(left) and bool(right) and left == right


@dataclass(frozen=True)
class MatchSignals:
    """Per-criterion outcome; None means the criterion does not apply."""
    phone: bool
    name: bool
    license: Optional[bool] = None

    @property
    def any(self) -> bool:
        return self.phone or self.name or bool(self.license)

    def to_dict(self) -> Dict[str, Optional[bool]]:
        return {"phone": self.phone, "name": self.name, "license": self.license}


class FieldMatchHighlighter:
    """
    Stateless highlighter. Evaluated per visible driver row whenever the
    driver list or the source selection changes.
    """

    def signals(self, source: SourceRecord, driver: Driver) -> MatchSignals:
        if isinstance(source, ScoutRegistration):
            return MatchSignals(
                phone=phones_match(source.driver_phone, driver.phone),
                name=names_match(source.driver_name, driver.full_name),
                license=licenses_match(source.driver_license, driver.license_number),
            )

        return MatchSignals(
            phone=phones_match(source.phone, driver.phone),
            name=names_match(source.full_name, driver.full_name),
        )

    def is_likely_match(self, source: Optional[SourceRecord], driver: Driver) -> bool:
        if source is None:
            return False
        return self.signals(source, driver).any


field_match_highlighter = FieldMatchHighlighter()
