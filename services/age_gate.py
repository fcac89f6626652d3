from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, Mapping, Optional, Union

from errors import InvalidInput

DEFAULT_AGE_THRESHOLD = 13
MAX_PLAUSIBLE_AGE = 120

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_COUNTRY_RE = re.compile(r"^[A-Za-z]{2}$")


class NextStep(str, Enum):
    DIRECT_ACCESS = "direct_access"
    PARENT_CONSENT_REQUIRED = "parent_consent_required"


@dataclass(frozen=True)
class AgeThresholds:
    """Minimum age for direct access, optionally per ISO-2 country."""

    default: int = DEFAULT_AGE_THRESHOLD
    by_country: Mapping[str, int] = field(default_factory=dict)

    def for_country(self, country_code: str) -> int:
        return int(self.by_country.get(country_code.upper(), self.default))

    @classmethod
    def from_settings(cls, s) -> "AgeThresholds":
        table: Dict[str, int] = {
            k.strip().upper(): int(v) for k, v in (s.country_age_thresholds or {}).items()
        }
        return cls(default=int(s.age_threshold), by_country=table)


@dataclass(frozen=True)
class AgeGateResult:
    subject_id: str
    birthdate: date
    country_code: str
    calculated_age: int
    threshold: int
    next_step: NextStep
    evaluated_at: datetime

    @property
    def is_under_threshold(self) -> bool:
        return self.next_step is NextStep.PARENT_CONSENT_REQUIRED


def calculate_age_in_years(birthdate: date, as_of: date) -> int:
    # Feb 29 birthdays roll over on Mar 1 in common years.
    age = as_of.year - birthdate.year
    if (as_of.month, as_of.day) < (birthdate.month, birthdate.day):
        age -= 1
    return age


def parse_birthdate(value: Union[str, date, None]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        raise InvalidInput("Birthdate is required.", field="birthdate")
    value = value.strip()
    if not _ISO_DATE_RE.match(value):
        raise InvalidInput("Birthdate must be in YYYY-MM-DD format.", field="birthdate")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidInput("Birthdate is invalid.", field="birthdate") from None


def normalize_country_code(value: Optional[str]) -> str:
    code = (value or "").strip()
    if not _COUNTRY_RE.match(code):
        raise InvalidInput(
            "Country code must be exactly 2 letters (example: US).",
            field="countryCode",
        )
    return code.upper()


def evaluate(
    birthdate: Union[str, date, None],
    country_code: Optional[str],
    now: Union[datetime, date],
    *,
    subject_id: str = "",
    thresholds: Optional[AgeThresholds] = None,
) -> AgeGateResult:
    """
    Classify a subject as eligible for direct access or as needing parental
    consent. Pure: the same (birthdate, country_code, now) always gives the
    same result.

    Raises InvalidInput for a missing/malformed/future birthdate or a country
    code that is not exactly two letters.
    """
    born = parse_birthdate(birthdate)
    country = normalize_country_code(country_code)

    today = now.date() if isinstance(now, datetime) else now
    if born > today:
        raise InvalidInput("Birthdate cannot be in the future.", field="birthdate")

    age = calculate_age_in_years(born, today)
    if age > MAX_PLAUSIBLE_AGE:
        raise InvalidInput("Birthdate is out of the allowed range.", field="birthdate")

    limit = (thresholds or AgeThresholds()).for_country(country)
    step = NextStep.DIRECT_ACCESS if age >= limit else NextStep.PARENT_CONSENT_REQUIRED

    evaluated_at = now if isinstance(now, datetime) else datetime.combine(now, datetime.min.time())
    return AgeGateResult(
        subject_id=subject_id,
        birthdate=born,
        country_code=country,
        calculated_age=age,
        threshold=limit,
        next_step=step,
        evaluated_at=evaluated_at,
    )
