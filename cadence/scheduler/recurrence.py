"""
Recurrence rules — compute the next occurrence of a calendar schedule.

A RecurrenceSpec is the declarative, validated description of *when*
something repeats. A RecurrenceRule wraps a spec and answers one question:
"what is the next occurrence strictly after this instant?"

Usage:
    rule = RecurrenceRule.from_options(
        frequency="monthly", weekDay="fr", week="last", startTime="18:00"
    )
    rule.next_after(datetime(2024, 1, 1))   # → 2024-01-26 18:00
    rule.description                        # → 'every month on the last fr at 18:00'

Calendar expansion is delegated to dateutil's rrule:

    frequency  → freq        (precise = yearly rule with count 1)
    interval   → interval
    weekDay(s) → byweekday   (weekDay wins when both are given)
    month      → bymonth
    monthDay   → bymonthday
    week       → bysetpos
    startTime  → byhour / byminute / bysecond
    startDate  → dtstart
    endDate    → until (inclusive)

The iteration cap is enforced here rather than through rrule's count, so
it counts occurrences this rule has actually handed out.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping
from datetime import datetime
from typing import Any, Literal

from dateutil.rrule import (
    DAILY,
    FR,
    HOURLY,
    MINUTELY,
    MO,
    MONTHLY,
    SA,
    SECONDLY,
    SU,
    TH,
    TU,
    WE,
    WEEKLY,
    YEARLY,
    rrule,
)
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from cadence.core.errors import ArgumentError, ValidationError

logger = logging.getLogger(__name__)

Frequency = Literal[
    "precise", "secondly", "minutely", "hourly", "daily", "weekly", "monthly", "yearly"
]
WeekDay = Literal["mo", "tu", "we", "th", "fr", "sa", "su"]
Week = Literal["first", "second", "third", "fourth", "last"]

FREQUENCIES: dict[str, int] = {
    "precise": YEARLY,
    "secondly": SECONDLY,
    "minutely": MINUTELY,
    "hourly": HOURLY,
    "daily": DAILY,
    "weekly": WEEKLY,
    "monthly": MONTHLY,
    "yearly": YEARLY,
}

DAYS = {"mo": MO, "tu": TU, "we": WE, "th": TH, "fr": FR, "sa": SA, "su": SU}

WEEKS = {"first": 1, "second": 2, "third": 3, "fourth": 4, "last": -1}

TIME_PATTERN = r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$"
_TIME_RE = re.compile(TIME_PATTERN)

# Expected type/range per field, used in ValidationError messages
EXPECTED: dict[str, str] = {
    "frequency": f"one of {', '.join(FREQUENCIES)}",
    "interval": "integer >= 1",
    "iterations": "integer >= 1",
    "month": "integer 1-12",
    "month_day": "integer 1-31",
    "week_day": f"one of {', '.join(DAYS)}",
    "week_days": f"list of {', '.join(DAYS)}",
    "week": f"one of {', '.join(WEEKS)}",
    "start_date": "datetime",
    "start_time": "time string HH:mm[:ss]",
    "end_date": "datetime",
}

_UNITS = {
    "secondly": "second",
    "minutely": "minute",
    "hourly": "hour",
    "daily": "day",
    "weekly": "week",
    "monthly": "month",
    "yearly": "year",
}


def as_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive local time; naive values pass through."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class RecurrenceSpec(BaseModel):
    """
    Immutable recurrence description.

    Fields accept both snake_case and camelCase names
    (``month_day`` / ``monthDay``). The model is frozen: once built, no
    field can be reassigned.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    frequency: Frequency = "precise"
    interval: int | None = Field(default=None, ge=1, strict=True)
    # validate_default so precise rules get iterations=1 even when omitted
    iterations: int | None = Field(default=None, ge=1, strict=True, validate_default=True)
    month: int | None = Field(default=None, ge=1, le=12, strict=True)
    month_day: int | None = Field(default=None, ge=1, le=31, strict=True)
    week_day: WeekDay | None = None
    week_days: tuple[WeekDay, ...] = ()
    week: Week | None = None
    start_date: datetime = Field(default_factory=datetime.now)
    start_time: str | None = Field(default=None, pattern=TIME_PATTERN)
    end_date: datetime | None = None

    @field_validator("iterations", mode="before")
    @classmethod
    def _precise_runs_once(cls, value: Any, info: ValidationInfo) -> Any:
        if info.data.get("frequency", "precise") == "precise":
            return 1
        return value

    @field_validator("week_days")
    @classmethod
    def _dedupe_days(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(dict.fromkeys(value))

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_instant(cls, value: datetime | None) -> datetime | None:
        return as_local_naive(value) if value is not None else None

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> RecurrenceSpec:
        """Validate a plain options mapping, raising ValidationError on bad data."""
        if not isinstance(options, Mapping):
            raise ArgumentError(
                f"Recurrence options must be a mapping, got {type(options).__name__}",
                argument="options",
            )
        try:
            return cls(**options)
        except PydanticValidationError as e:
            raise _translate(e) from e

    @property
    def time_of_day(self) -> tuple[int, int, int] | None:
        """``start_time`` split into (hour, minute, second); seconds default to 0."""
        if self.start_time is None:
            return None
        hour, minute, second = _TIME_RE.match(self.start_time).groups()
        return int(hour), int(minute), int(second or 0)


def _translate(error: PydanticValidationError) -> ValidationError:
    """Turn the first pydantic error into a field-named ValidationError."""
    first = error.errors()[0]
    loc = first.get("loc") or ("",)
    raw = str(loc[0])
    field = _FIELD_BY_ALIAS.get(raw, raw)
    expected = EXPECTED.get(field, "no such option")
    return ValidationError(
        f"Invalid recurrence option {field!r}: expected {expected} ({first['msg']})",
        field=field,
        expected=expected,
        details={"input": first.get("input"), "type": first.get("type")},
    )


_FIELD_BY_ALIAS = {to_camel(name): name for name in RecurrenceSpec.model_fields}


class RecurrenceRule:
    """
    Stateful next-occurrence evaluator for one RecurrenceSpec.

    ``next_after`` is a pure calendar lookup except for the iteration cap:
    each distinct occurrence it returns counts against ``iterations``.
    Asking again for an occurrence already handed out is free.
    """

    def __init__(self, spec: RecurrenceSpec) -> None:
        if not isinstance(spec, RecurrenceSpec):
            raise ArgumentError(
                f"RecurrenceRule needs a RecurrenceSpec, got {type(spec).__name__}",
                argument="spec",
            )
        self._spec = spec
        self._rrule = self._build(spec)
        self._produced = 0
        self._handed_out: set[datetime] = set()

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None = None, **kwargs: Any) -> RecurrenceRule:
        if options is None:
            options = {}
        elif not isinstance(options, Mapping):
            raise ArgumentError(
                f"Recurrence options must be a mapping, got {type(options).__name__}",
                argument="options",
            )
        return cls(RecurrenceSpec.from_options({**options, **kwargs}))

    @staticmethod
    def _build(spec: RecurrenceSpec) -> rrule:
        if spec.week_day:
            byweekday = DAYS[spec.week_day]
        elif spec.week_days:
            byweekday = [DAYS[day] for day in spec.week_days]
        else:
            byweekday = None

        hour, minute, second = spec.time_of_day or (None, None, None)
        precise = spec.frequency == "precise"

        return rrule(
            FREQUENCIES[spec.frequency],
            dtstart=spec.start_date,
            interval=spec.interval or 1,
            # precise: only the first match counts; until would clash with count
            count=1 if precise else None,
            until=None if precise else spec.end_date,
            byweekday=byweekday,
            bymonth=spec.month,
            bymonthday=spec.month_day,
            byhour=hour,
            byminute=minute,
            bysecond=second,
            bysetpos=WEEKS[spec.week] if spec.week else None,
        )

    # ── Evaluation ────────────────────────────────────────────────────────────

    def next_after(self, instant: datetime) -> datetime | None:
        """
        Return the earliest occurrence strictly after ``instant``.

        Returns None once the rule is exhausted: the iteration cap has been
        reached or the next candidate lies beyond ``end_date``.
        """
        candidate = self._rrule.after(as_local_naive(instant), inc=False)
        if candidate is None or self._beyond_end(candidate):
            return None

        if candidate in self._handed_out:
            return candidate

        cap = self._spec.iterations
        if cap is not None and self._produced >= cap:
            logger.debug(f"Recurrence exhausted after {self._produced} occurrence(s)")
            return None

        self._produced += 1
        self._handed_out.add(candidate)
        return candidate

    def occurrences(self, after: datetime, limit: int = 10) -> Iterator[datetime]:
        """Preview up to ``limit`` upcoming occurrences without consuming the cap."""
        cap = self._spec.iterations
        remaining = None if cap is None else cap - self._produced
        if limit < 1:
            return
        for candidate in self._rrule.xafter(as_local_naive(after), inc=False):
            if self._beyond_end(candidate):
                return
            if candidate not in self._handed_out:
                if remaining is not None:
                    if remaining <= 0:
                        return
                    remaining -= 1
            yield candidate
            limit -= 1
            if limit == 0:
                return

    def _beyond_end(self, candidate: datetime) -> bool:
        end = self._spec.end_date
        return end is not None and candidate > end

    # ── Introspection ─────────────────────────────────────────────────────────

    @property
    def spec(self) -> RecurrenceSpec:
        return self._spec

    @property
    def produced(self) -> int:
        """Number of distinct occurrences handed out so far."""
        return self._produced

    @property
    def description(self) -> str:
        """Human-readable description, e.g. 'every 2 weeks on mo,we at 09:00'."""
        spec = self._spec
        if spec.frequency == "precise":
            first = next(iter(self._rrule), None)
            if first is None:
                return "never"
            return f"once at {first:%Y-%m-%d %H:%M}"

        unit = _UNITS[spec.frequency]
        step = spec.interval or 1
        text = f"every {unit}" if step == 1 else f"every {step} {unit}s"

        days = spec.week_day or ",".join(spec.week_days)
        if spec.week and days:
            text += f" on the {spec.week} {days}"
        elif days:
            text += f" on {days}"
        elif spec.week:
            text += f" (position {spec.week})"
        if spec.month:
            text += f" in month {spec.month}"
        if spec.month_day:
            text += f" on day {spec.month_day}"
        if spec.start_time:
            text += f" at {spec.start_time}"
        if spec.iterations:
            text += f", {spec.iterations} times"
        if spec.end_date:
            text += f", until {spec.end_date:%Y-%m-%d %H:%M}"
        return text

    def __repr__(self) -> str:
        return f"RecurrenceRule({self.description!r})"
