"""Half-open time-of-day intervals and the operations built on them."""

from __future__ import annotations

import re
from typing import Iterable, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from facility_booking.exceptions import InvalidScheduleError

MINUTES_PER_DAY = 24 * 60

_CLOCK_RE = re.compile(r"^(\d{2}):(\d{2})$")

T = TypeVar("T")


def parse_time_of_day(value: str) -> int:
    """Parse an ``"HH:MM"`` string into minutes since midnight.

    ``"24:00"`` is accepted and means end of day.
    """
    match = _CLOCK_RE.match(value) if isinstance(value, str) else None
    if match is None:
        raise InvalidScheduleError(f"Invalid time {value!r}, expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours == 24 and minutes == 0:
        return MINUTES_PER_DAY
    if hours > 23 or minutes > 59:
        raise InvalidScheduleError(f"Invalid time {value!r}, expected HH:MM")
    return hours * 60 + minutes


def format_time_of_day(minutes: int) -> str:
    if not 0 <= minutes <= MINUTES_PER_DAY:
        raise InvalidScheduleError(f"Minute offset {minutes} is outside a day")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def intervals_overlap(a_start: T, a_end: T, b_start: T, b_end: T) -> bool:
    """Half-open overlap test: ``[a_start, a_end)`` vs ``[b_start, b_end)``.

    Touching intervals (``a_end == b_start``) do not overlap.
    """
    return a_start < b_end and b_start < a_end


class TimeBlock(BaseModel):
    """An open interval ``[from, to)`` within one day, in minutes since midnight."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    start: int = Field(alias="from", ge=0, le=MINUTES_PER_DAY)
    end: int = Field(alias="to", ge=0, le=MINUTES_PER_DAY)

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_clock(cls, value: object) -> object:
        if isinstance(value, str):
            return parse_time_of_day(value)
        return value

    @model_validator(mode="after")
    def _start_before_end(self) -> TimeBlock:
        if self.start >= self.end:
            raise ValueError(
                f"time block {format_time_of_day(self.start)}-"
                f"{format_time_of_day(self.end)} must end after it starts"
            )
        return self

    @field_serializer("start", "end")
    def _format_clock(self, value: int) -> str:
        return format_time_of_day(value)

    @classmethod
    def of(cls, start: str, end: str) -> TimeBlock:
        return cls.model_validate({"from": start, "to": end})

    @property
    def duration_minutes(self) -> int:
        return self.end - self.start

    def contains(self, start: int, end: int) -> bool:
        return self.start <= start and end <= self.end

    def overlaps(self, other: TimeBlock) -> bool:
        return intervals_overlap(self.start, self.end, other.start, other.end)

    def __str__(self) -> str:
        return f"{format_time_of_day(self.start)}-{format_time_of_day(self.end)}"


def normalize_blocks(blocks: Iterable[TimeBlock]) -> list[TimeBlock]:
    """Sort blocks by start and merge any that touch or overlap."""
    merged: list[TimeBlock] = []
    for block in sorted(blocks, key=lambda b: (b.start, b.end)):
        if merged and block.start <= merged[-1].end:
            last = merged[-1]
            if block.end > last.end:
                merged[-1] = TimeBlock(start=last.start, end=block.end)
            continue
        merged.append(block)
    return merged


def find_overlapping_blocks(blocks: Iterable[TimeBlock]) -> list[tuple[TimeBlock, TimeBlock]]:
    """Return each pair of blocks that overlap. Touching blocks are fine."""
    ordered = sorted(blocks, key=lambda b: (b.start, b.end))
    pairs: list[tuple[TimeBlock, TimeBlock]] = []
    for i, first in enumerate(ordered):
        for second in ordered[i + 1 :]:
            if second.start >= first.end:
                break
            pairs.append((first, second))
    return pairs


def is_range_available(blocks: Iterable[TimeBlock], start: int, end: int) -> bool:
    """True when ``[start, end)`` sits entirely inside a single block."""
    return any(block.contains(start, end) for block in blocks)
