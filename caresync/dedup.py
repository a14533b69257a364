"""Filters provider batches down to readings not already stored."""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from caresync.models.glucose import GlucoseReading


def _round_to_second(value: datetime) -> datetime:
    rounded = value.replace(microsecond=0)
    if value.microsecond >= 500_000:
        rounded += timedelta(seconds=1)
    return rounded


class Deduplicator:
    """
    Drops candidates whose timestamp is already stored for the owner.

    With `round_to_second` the comparison tolerates sub-second precision
    differences between providers; without it instants must match exactly.
    Duplicates inside the candidate batch are collapsed as well, so re-running
    a sync over an unchanged upstream window inserts nothing.
    """

    def __init__(self, round_to_second: bool = True):
        self.round_to_second = round_to_second

    def _key(self, reading: GlucoseReading) -> datetime:
        return _round_to_second(reading.timestamp) if self.round_to_second else reading.timestamp

    def filter_new(
        self,
        candidates: Iterable[GlucoseReading],
        existing: Iterable[GlucoseReading]
    ) -> List[GlucoseReading]:
        seen = {self._key(r) for r in existing}
        fresh = []
        for reading in candidates:
            key = self._key(reading)
            if key in seen:
                continue
            seen.add(key)
            fresh.append(reading)
        return fresh

    @staticmethod
    def filter_newer_than(
        candidates: Iterable[GlucoseReading],
        watermark: Optional[datetime]
    ) -> List[GlucoseReading]:
        """Keep readings strictly newer than the watermark (all of them when there is none)."""
        fresh = [r for r in candidates if watermark is None or r.timestamp > watermark]
        unique = {r.timestamp: r for r in fresh}
        return sorted(unique.values(), key=lambda r: r.timestamp)
