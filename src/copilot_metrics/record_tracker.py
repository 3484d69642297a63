import datetime

from copilot_metrics.models import RecordScope, UsageRecord


class RecordTracker:
    """
    RecordTracker: prevents double-counting records that show up in
    more than one fetch of the same run (overlapping 28-day windows,
    a date fetched twice, duplicated report lines).

    Records are keyed by (date, scope, subject_login); the first
    occurrence wins. A tracker lives for a single run only.
    """

    def __init__(self) -> "None":
        self._seen: "set[tuple[datetime.date, RecordScope, str | None]]" = set()
        self._duplicates = 0

    @property
    def duplicates(self) -> "int":
        """
        number of records rejected as already seen.
        """
        return self._duplicates

    def is_new(self, record: "UsageRecord") -> "bool":
        """
        checks if the record's key is new. If so, marks it as seen
        and returns True.
        """
        key = record.key
        if key in self._seen:
            self._duplicates += 1
            return False

        self._seen.add(key)
        return True

    def unique(self, records: "list[UsageRecord]") -> "list[UsageRecord]":
        """
        returns the records whose key has not been seen yet, keeping
        their original order.
        """
        return [r for r in records if self.is_new(r)]
