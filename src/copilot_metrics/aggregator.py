import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable

from copilot_metrics.models import (
    AggregateSnapshot,
    BreakdownEntry,
    DailyTotals,
    Growth,
    RankedSubject,
    ReportRequest,
    Totals,
    UsageRecord,
)
from copilot_metrics.record_tracker import RecordTracker

TOP_N = 10
TWO_PLACES = Decimal("0.01")


def round_2dp(value: "Decimal") -> "Decimal":
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def acceptance_rate(acceptances: "int", suggestions: "int") -> "Decimal":
    """
    unrounded acceptance percentage. Zero suggestions give a rate of
    zero, never a division error.
    """
    if suggestions <= 0:
        return Decimal(0)
    return Decimal(acceptances * 100) / Decimal(suggestions)


def floor_rate(acceptances: "int", suggestions: "int") -> "int":
    """
    acceptance percentage rounded down to an integer, as written to
    the record and tabular exports.
    """
    if suggestions <= 0:
        return 0
    return (acceptances * 100) // suggestions


def rate_2dp(acceptances: "int", suggestions: "int") -> "Decimal":
    """
    acceptance percentage at two decimals, as written to the
    narrative export.
    """
    return round_2dp(acceptance_rate(acceptances, suggestions))


def sum_totals(records: "Iterable[UsageRecord]") -> "Totals":
    records = list(records)
    users = [r for r in records if r.is_user_level]
    aggregates = [r for r in records if not r.is_user_level]

    return Totals(
        records=len(records),
        subjects=len({r.subject_login for r in users}),
        active_users=(
            sum(1 for r in users if r.is_active)
            + sum(r.engaged_users for r in aggregates)
        ),
        suggestions=sum(r.suggestions_count for r in records),
        acceptances=sum(r.acceptances_count for r in records),
        lines_suggested=sum(r.lines_suggested for r in records),
        lines_accepted=sum(r.lines_accepted for r in records),
        chat_turns=sum(r.chat_turns for r in records),
        ide_chat_turns=sum(r.ide_chat_turns for r in records),
        dotcom_chat_turns=sum(r.dotcom_chat_turns for r in records),
        active_chat_users=sum(r.active_chat_users for r in records),
        engaged_users=sum(r.engaged_users for r in records),
    )


def daily_totals(
    records: "list[UsageRecord]",
    dates: "Iterable[datetime.date]" = (),
    skipped: "dict[datetime.date, str] | None" = None,
) -> "tuple[DailyTotals, ...]":
    """
    folds records into one entry per date, in calendar order. Dates
    listed in `dates` without any record become "no data" entries,
    carrying the reason from `skipped` when the fetch failed.
    """
    skipped = skipped or {}
    by_date: "dict[datetime.date, list[UsageRecord]]" = {}
    for record in records:
        by_date.setdefault(record.date, []).append(record)

    series: "list[DailyTotals]" = []
    for day in sorted(set(dates) | set(by_date) | set(skipped)):
        if day in by_date:
            series.append(DailyTotals(date=day, totals=sum_totals(by_date[day])))
        else:
            series.append(DailyTotals(date=day, totals=None, note=skipped.get(day)))
    return tuple(series)


def average_active_users(daily: "Iterable[DailyTotals]") -> "int | None":
    """
    mean of daily active users over the days with data, rounded to
    the nearest integer.
    """
    values = [d.totals.active_users for d in daily if d.totals is not None]
    if not values:
        return None
    mean = Decimal(sum(values)) / Decimal(len(values))
    return int(mean.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def average_acceptance_rate(daily: "Iterable[DailyTotals]") -> "Decimal | None":
    """
    mean of the daily acceptance rates over the days with data, at
    two decimals.
    """
    rates = [
        acceptance_rate(d.totals.acceptances, d.totals.suggestions)
        for d in daily
        if d.totals is not None
    ]
    if not rates:
        return None
    return round_2dp(sum(rates, Decimal(0)) / Decimal(len(rates)))


def growth(
    metric: "str",
    daily: "Iterable[DailyTotals]",
    value: "Callable[[Totals], int]",
) -> "Growth | None":
    """
    percentage change of a metric between the first and last dates
    with data, by calendar order. None when fewer than two dates have
    data; a zero first value gives a Growth that is not computable.
    """
    points = sorted(
        ((d.date, value(d.totals)) for d in daily if d.totals is not None),
        key=lambda point: point[0],
    )
    if len(points) < 2:
        return None

    (first_date, first), (last_date, last) = points[0], points[-1]
    percent = None
    if first != 0:
        percent = round_2dp(Decimal(last - first) / Decimal(first) * 100)

    return Growth(
        metric=metric,
        first_date=first_date,
        last_date=last_date,
        first=first,
        last=last,
        percent=percent,
    )


def top_users(records: "Iterable[UsageRecord]", limit: "int" = TOP_N) -> "tuple[RankedSubject, ...]":
    """
    ranks user-level subjects by acceptances, descending. Subjects
    are summed over the window first; ties keep the order in which
    subjects first appeared.
    """
    totals: "dict[str, list[int]]" = {}
    for record in records:
        if record.subject_login is None:
            continue
        counts = totals.setdefault(record.subject_login, [0, 0])
        counts[0] += record.acceptances_count
        counts[1] += record.suggestions_count

    subjects = [RankedSubject(login, a, s) for login, (a, s) in totals.items()]
    # sorted() is stable, so equal acceptances keep first-seen order
    return tuple(sorted(subjects, key=lambda s: -s.acceptances)[:limit])


def top_editors(records: "Iterable[UsageRecord]", limit: "int" = TOP_N) -> "tuple[BreakdownEntry, ...]":
    totals: "dict[str, list[int]]" = {}
    for record in records:
        for editor in record.editor_breakdown:
            counts = totals.setdefault(editor.name, [0, 0])
            counts[0] += editor.suggestions
            counts[1] += editor.acceptances

    entries = [BreakdownEntry(name, s, a) for name, (s, a) in totals.items()]
    return tuple(sorted(entries, key=lambda e: -e.suggestions)[:limit])


def top_languages(records: "Iterable[UsageRecord]", limit: "int" = TOP_N) -> "tuple[BreakdownEntry, ...]":
    totals: "dict[str, int]" = {}
    for record in records:
        for language in record.language_breakdown:
            totals[language.name] = totals.get(language.name, 0) + language.suggestions

    entries = [BreakdownEntry(name, s) for name, s in totals.items()]
    return tuple(sorted(entries, key=lambda e: -e.suggestions)[:limit])


def build_snapshot(
    request: "ReportRequest",
    records: "list[UsageRecord]",
    dates: "Iterable[datetime.date]" = (),
    skipped: "dict[datetime.date, str] | None" = None,
) -> "AggregateSnapshot":
    """
    folds a fixed set of records into an AggregateSnapshot. Records
    sharing a (date, scope, subject) key are counted once.
    """
    records = RecordTracker().unique(records)
    totals = sum_totals(records)
    daily = daily_totals(records, dates, skipped)

    trends = [
        growth("acceptances", daily, lambda t: t.acceptances),
        growth("active_users", daily, lambda t: t.active_users),
    ]

    return AggregateSnapshot(
        request=request,
        totals=totals,
        acceptance_rate=rate_2dp(totals.acceptances, totals.suggestions),
        acceptance_rate_floor=floor_rate(totals.acceptances, totals.suggestions),
        daily=daily,
        average_active_users=average_active_users(daily),
        average_acceptance_rate=average_acceptance_rate(daily),
        growth=tuple(g for g in trends if g is not None),
        top_users=top_users(records),
        top_editors=top_editors(records),
        top_languages=top_languages(records),
    )
