import csv
import datetime
import io
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from copilot_metrics.aggregator import floor_rate, rate_2dp
from copilot_metrics.errors import OutputError
from copilot_metrics.models import (
    AggregateSnapshot,
    Granularity,
    ReportBundle,
    ReportRequest,
    Scope,
    UsageRecord,
)

logger = structlog.get_logger()

TABLE_HEADER: "list[str]" = [
    "date",
    "subject",
    "acceptances",
    "suggestions",
    "rate",
    "linesAccepted",
    "linesSuggested",
    "chats",
    "ideChats",
    "dotcomChats",
]

DELIMITER = "=" * 40
RULE = "-" * 40

_TITLES: "dict[Scope, str]" = {
    Scope.ORGANIZATION: "GitHub Copilot Organization Metrics",
    Scope.ENTERPRISE: "GitHub Copilot Enterprise Metrics",
    Scope.TEAM: "GitHub Copilot Team Metrics",
    Scope.USER: "GitHub Copilot Enterprise User Metrics",
}

_GROWTH_LABELS: "dict[str, str]" = {
    "acceptances": "Acceptances",
    "active_users": "Active Users",
}


@dataclass
class Section:
    """
    a titled block of narrative lines. Sections are assembled first
    and only turned into text by render_narrative().
    """

    title: "str"
    lines: "list[str]" = field(default_factory=list)


def record_to_dict(record: "UsageRecord") -> "dict[str, Any]":
    """
    encodes every canonical field of a record, plus its floored
    acceptance rate.
    """
    return {
        "date": record.date.isoformat(),
        "scope": record.scope.value,
        "subject_login": record.subject_login,
        "suggestions_count": record.suggestions_count,
        "acceptances_count": record.acceptances_count,
        "acceptance_rate": floor_rate(record.acceptances_count, record.suggestions_count),
        "lines_suggested": record.lines_suggested,
        "lines_accepted": record.lines_accepted,
        "chat_turns": record.chat_turns,
        "ide_chat_turns": record.ide_chat_turns,
        "dotcom_chat_turns": record.dotcom_chat_turns,
        "active_chat_users": record.active_chat_users,
        "engaged_users": record.engaged_users,
        "editor_breakdown": [
            {"name": e.name, "suggestions": e.suggestions, "acceptances": e.acceptances}
            for e in record.editor_breakdown
        ],
        "language_breakdown": [
            {"name": lang.name, "suggestions": lang.suggestions}
            for lang in record.language_breakdown
        ],
    }


def render_records(records: "list[UsageRecord]") -> "str":
    """
    one JSON object per line, in normalization order.
    """
    return "".join(
        json.dumps(record_to_dict(r), separators=(",", ":")) + "\n" for r in records
    )


def table_rows(records: "list[UsageRecord]") -> "list[list[str | int]]":
    rows: "list[list[str | int]]" = []
    for r in records:
        rows.append(
            [
                r.date.isoformat(),
                r.subject_login or r.scope.value,
                r.acceptances_count,
                r.suggestions_count,
                floor_rate(r.acceptances_count, r.suggestions_count),
                r.lines_accepted,
                r.lines_suggested,
                r.chat_turns,
                r.ide_chat_turns,
                r.dotcom_chat_turns,
            ]
        )
    return rows


def render_table(records: "list[UsageRecord]") -> "str":
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(TABLE_HEADER)
    writer.writerows(table_rows(records))
    return buffer.getvalue()


def _title(request: "ReportRequest") -> "str":
    if request.granularity == Granularity.ROLLING_28_DAY:
        return "GitHub Copilot 28-Day Metrics"
    if request.granularity == Granularity.LEGACY_RANGE:
        return "GitHub Copilot Usage Metrics"
    if request.granularity == Granularity.RANGE and request.scope != Scope.TEAM:
        return "GitHub Copilot Trends"
    return _TITLES[request.scope]


def _identity(snapshot: "AggregateSnapshot") -> "list[str]":
    request = snapshot.request
    if request.scope in (Scope.ENTERPRISE, Scope.USER):
        lines = [f"Enterprise: {request.target}"]
    else:
        lines = [f"Organization: {request.target}"]

    if request.team_slug:
        lines.append(f"Team: {request.team_slug}")
    if request.user_login:
        lines.append(f"User: {request.user_login}")

    window = request.window
    if request.granularity == Granularity.ROLLING_28_DAY:
        lines.append("Period: Last 28 days")
        data_days = [d.date for d in snapshot.daily if d.has_data]
        if data_days:
            lines.append(f"Data Range: {data_days[0]} to {data_days[-1]}")
    elif window.is_single_day:
        lines.append(f"Date: {window.start}")
    else:
        lines.append(f"Date Range: {window.start} to {window.end}")
    return lines


def _totals_section(snapshot: "AggregateSnapshot") -> "Section":
    totals = snapshot.totals
    section = Section("Totals:")
    if not totals.records:
        section.lines.append("No data available")
    if totals.subjects:
        section.lines.append(f"Total Users in Report: {totals.subjects}")
    section.lines.extend(
        [
            f"Active Users: {totals.active_users}",
            f"Total Code Suggestions: {totals.suggestions}",
            f"Total Code Acceptances: {totals.acceptances}",
            f"Lines Suggested: {totals.lines_suggested}",
            f"Lines Accepted: {totals.lines_accepted}",
            f"Chat Turns: {totals.chat_turns} "
            f"(IDE: {totals.ide_chat_turns}, github.com: {totals.dotcom_chat_turns})",
            f"Active Chat Users: {totals.active_chat_users}",
        ]
    )
    return section


def _rate_section(snapshot: "AggregateSnapshot") -> "Section":
    section = Section("Rates:")
    section.lines.append(f"Acceptance Rate: {snapshot.acceptance_rate:.2f}%")
    if snapshot.days_with_data > 1:
        if snapshot.average_acceptance_rate is not None:
            section.lines.append(
                f"Average Daily Acceptance Rate: {snapshot.average_acceptance_rate:.2f}%"
            )
        if snapshot.average_active_users is not None:
            section.lines.append(f"Average Active Users: {snapshot.average_active_users}")
    return section


def _trend_section(snapshot: "AggregateSnapshot") -> "Section | None":
    if not snapshot.growth:
        return None

    section = Section("Trends:")
    for g in snapshot.growth:
        label = _GROWTH_LABELS.get(g.metric, g.metric)
        if g.percent is None:
            value = "not computable (first value is 0)"
        else:
            value = f"{g.percent:.2f}%"
        section.lines.append(
            f"{label} Growth ({g.first_date} to {g.last_date}, "
            f"{g.first} -> {g.last}): {value}"
        )
    return section


def _daily_section(snapshot: "AggregateSnapshot") -> "Section | None":
    if len(snapshot.daily) < 2:
        return None

    section = Section("Daily Breakdown:")
    for day in snapshot.daily:
        date = day.date.isoformat()
        if day.totals is None:
            note = f" ({day.note})" if day.note else ""
            section.lines.append(f"{date:<12} | No data{note}")
            continue

        t = day.totals
        section.lines.append(
            f"{date:<12} | Active: {t.active_users:3d} "
            f"| Acceptances: {t.acceptances:6d} "
            f"| Rate: {rate_2dp(t.acceptances, t.suggestions):.2f}%"
        )
    return section


def _ranking_sections(snapshot: "AggregateSnapshot") -> "list[Section]":
    sections: "list[Section]" = []
    if snapshot.top_users:
        sections.append(
            Section(
                "Top Users by Acceptances:",
                [f"  {u.login}: {u.acceptances} acceptances" for u in snapshot.top_users],
            )
        )
    if snapshot.top_editors:
        sections.append(
            Section(
                "Breakdown by Editor:",
                [
                    f"  {e.name}: {e.suggestions} suggestions, {e.acceptances} acceptances"
                    for e in snapshot.top_editors
                ],
            )
        )
    if snapshot.top_languages:
        sections.append(
            Section(
                "Top Languages:",
                [f"  {lang.name}: {lang.suggestions} suggestions" for lang in snapshot.top_languages],
            )
        )
    return sections


def narrative_sections(snapshot: "AggregateSnapshot") -> "list[Section]":
    """
    sections in their fixed order: identity, totals, rate, then the
    optional trends, daily breakdown and rankings.
    """
    sections = [
        Section(_title(snapshot.request), _identity(snapshot)),
        _totals_section(snapshot),
        _rate_section(snapshot),
        _trend_section(snapshot),
        _daily_section(snapshot),
        *_ranking_sections(snapshot),
    ]
    return [s for s in sections if s is not None]


def render_narrative(sections: "list[Section]") -> "str":
    header, *body = sections
    lines = [DELIMITER, header.title, DELIMITER, "", *header.lines, RULE, ""]
    for section in body:
        lines.append(section.title)
        lines.extend(section.lines)
        lines.append("")

    lines.append(DELIMITER)
    return "\n".join(lines) + "\n"


def build_bundle(
    snapshot: "AggregateSnapshot",
    records: "list[UsageRecord]",
) -> "ReportBundle":
    """
    renders the three synchronized outputs from one snapshot and the
    records it was built from.
    """
    return ReportBundle(
        records=render_records(records),
        table=render_table(records),
        narrative=render_narrative(narrative_sections(snapshot)),
    )


def report_basename(request: "ReportRequest", run_date: "datetime.date") -> "str":
    """
    copilot-<scope>-<subject>-<period>, where subject is the team
    slug, user login or target.
    """
    subject = request.team_slug or request.user_login or request.target
    window = request.window
    if request.granularity == Granularity.ROLLING_28_DAY:
        period = f"28day-{run_date.isoformat()}"
    elif window.is_single_day:
        period = window.start.isoformat()
    else:
        period = f"{window.start.isoformat()}-to-{window.end.isoformat()}"
    return f"copilot-{request.scope.value}-{subject}-{period}"


def write_bundle(
    bundle: "ReportBundle",
    output_dir: "str | Path",
    basename: "str",
) -> "dict[str, Path]":
    """
    writes the bundle once, one UTF-8 file per representation.
    """
    directory = Path(output_dir)
    paths = {
        "ndjson": directory / f"{basename}.ndjson",
        "csv": directory / f"{basename}.csv",
        "txt": directory / f"{basename}.txt",
    }
    try:
        directory.mkdir(parents=True, exist_ok=True)
        paths["ndjson"].write_text(bundle.records, encoding="utf-8")
        paths["csv"].write_text(bundle.table, encoding="utf-8")
        paths["txt"].write_text(bundle.narrative, encoding="utf-8")
    except OSError as exc:
        raise OutputError(f"could not write reports to {directory}: {exc}") from exc

    for kind, path in paths.items():
        logger.info("report_written", format=kind, path=str(path))
    return paths
