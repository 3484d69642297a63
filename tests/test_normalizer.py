import datetime
import json
from typing import Any, Callable

import pytest

from copilot_metrics.errors import NormalizationError
from copilot_metrics.models import EditorUsage, LanguageUsage, RecordScope
from copilot_metrics.normalizer import LegacyDayMetrics, ReportLine, decode_payload, normalize

LEGACY_DAY: "dict[str, Any]" = {
    "day": "2024-12-15",
    "total_suggestions_count": 1000,
    "total_acceptances_count": 800,
    "total_lines_suggested": 1800,
    "total_lines_accepted": 1200,
    "total_active_users": 10,
    "total_chat_acceptances": 32,
    "total_chat_turns": 200,
    "total_active_chat_users": 4,
    "breakdown": [
        {
            "language": "python",
            "editor": "vscode",
            "suggestions_count": 300,
            "acceptances_count": 250,
        },
        {
            "language": "python",
            "editor": "jetbrains",
            "suggestions_count": 200,
            "acceptances_count": 150,
        },
        {
            "language": "ruby",
            "editor": "vscode",
            "suggestions_count": 500,
            "acceptances_count": 400,
        },
    ],
}


class TestLegacyShape:
    def test_maps_flat_totals(self) -> "None":
        payload = json.dumps([LEGACY_DAY]).encode()
        (record,) = normalize(payload, RecordScope.ORGANIZATION)

        assert record.date == datetime.date(2024, 12, 15)
        assert record.scope == RecordScope.ORGANIZATION
        assert record.subject_login is None
        assert record.suggestions_count == 1000
        assert record.acceptances_count == 800
        assert record.lines_suggested == 1800
        assert record.lines_accepted == 1200
        assert record.chat_turns == 200
        assert record.active_chat_users == 4
        assert record.engaged_users == 10

    def test_groups_breakdown_by_editor_and_language(self) -> "None":
        payload = json.dumps([LEGACY_DAY]).encode()
        (record,) = normalize(payload, RecordScope.ORGANIZATION)

        assert record.editor_breakdown == (
            EditorUsage("vscode", 800, 650),
            EditorUsage("jetbrains", 200, 150),
        )
        assert record.language_breakdown == (
            LanguageUsage("python", 500),
            LanguageUsage("ruby", 500),
        )

    def test_nested_languages_are_used_when_present(self) -> "None":
        item = {
            "day": "2024-12-15",
            "total_suggestions_count": 10,
            "breakdown": [
                {
                    "editor": "vscode",
                    "suggestions_count": 10,
                    "languages": [
                        {"name": "go", "suggestions_count": 7},
                        {"name": "rust", "suggestions_count": 3},
                    ],
                }
            ],
        }
        (record,) = normalize(json.dumps([item]).encode(), RecordScope.ORGANIZATION)
        assert record.language_breakdown == (
            LanguageUsage("go", 7),
            LanguageUsage("rust", 3),
        )

    def test_missing_and_null_fields_are_zero(self) -> "None":
        item = {"day": "2024-12-15", "total_suggestions_count": None, "breakdown": None}
        (record,) = normalize(json.dumps([item]).encode(), RecordScope.ORGANIZATION)

        assert record.suggestions_count == 0
        assert record.acceptances_count == 0
        assert record.chat_turns == 0
        assert record.editor_breakdown == ()
        assert not record.is_active

    def test_empty_array_gives_no_records(self) -> "None":
        assert normalize(b"[]", RecordScope.ORGANIZATION) == []


class TestReportLineShape:
    def test_per_user_ndjson(
        self,
        report_line: "Callable[..., dict[str, Any]]",
        to_ndjson: "Callable[..., bytes]",
    ) -> "None":
        payload = to_ndjson(
            report_line(
                "octocat",
                acceptances=12,
                suggestions=40,
                lines_accepted=30,
                lines_suggested=90,
                ide_chats=5,
                dotcom_chats=2,
            ),
            report_line("hubot", acceptances=0, suggestions=3),
        )
        first, second = normalize(payload, RecordScope.ORGANIZATION)

        assert first.scope == RecordScope.USER
        assert first.subject_login == "octocat"
        assert first.acceptances_count == 12
        assert first.suggestions_count == 40
        assert first.lines_accepted == 30
        assert first.lines_suggested == 90
        assert first.chat_turns == 7
        assert first.ide_chat_turns == 5
        assert first.dotcom_chat_turns == 2
        assert first.active_chat_users == 1
        assert first.engaged_users == 1
        assert first.is_active

        assert second.subject_login == "hubot"
        assert not second.is_active
        assert second.active_chat_users == 0

    def test_null_nested_fields_are_zero(self) -> "None":
        line = {
            "date": "2026-02-15",
            "user_login": "octocat",
            "copilot_ide_code_completions": {
                "total_code_acceptances": None,
                "total_code_suggestions": None,
            },
            "copilot_ide_chat": None,
        }
        (record,) = normalize(json.dumps(line).encode(), RecordScope.ENTERPRISE)

        assert record.acceptances_count == 0
        assert record.suggestions_count == 0
        assert record.chat_turns == 0
        assert record.engaged_users == 0

    def test_line_without_login_is_aggregate_for_request_scope(self) -> "None":
        line = {
            "day": "2026-02-15",
            "total_engaged_users": 25,
            "copilot_ide_code_completions": {
                "total_code_acceptances": 100,
                "total_code_suggestions": 400,
                "total_engaged_users": 20,
            },
            "copilot_ide_chat": {"total_chats": 9, "total_engaged_users": 3},
            "copilot_dotcom_chat": {"total_chats": 1, "total_engaged_users": 1},
        }
        (record,) = normalize(json.dumps(line).encode(), RecordScope.ENTERPRISE)

        assert record.scope == RecordScope.ENTERPRISE
        assert record.subject_login is None
        assert record.engaged_users == 25
        assert record.active_chat_users == 4
        assert record.chat_turns == 10

    def test_editor_and_language_breakdown(self) -> "None":
        line = {
            "date": "2026-02-15",
            "user_login": "octocat",
            "copilot_ide_code_completions": {
                "total_code_acceptances": 6,
                "total_code_suggestions": 20,
                "editors": [
                    {
                        "name": "vscode",
                        "models": [
                            {
                                "name": "default",
                                "languages": [
                                    {
                                        "name": "python",
                                        "total_code_suggestions": 12,
                                        "total_code_acceptances": 4,
                                    },
                                    {
                                        "name": "go",
                                        "total_code_suggestions": 8,
                                        "total_code_acceptances": 2,
                                    },
                                ],
                            }
                        ],
                    }
                ],
            },
        }
        (record,) = normalize(json.dumps(line).encode(), RecordScope.ORGANIZATION)

        assert record.editor_breakdown == (EditorUsage("vscode", 20, 6),)
        assert record.language_breakdown == (
            LanguageUsage("python", 12),
            LanguageUsage("go", 8),
        )

    def test_rolling_report_lines_decode_like_daily_lines(
        self,
        report_line: "Callable[..., dict[str, Any]]",
        to_ndjson: "Callable[..., bytes]",
    ) -> "None":
        payload = to_ndjson(
            report_line("octocat", day="2026-01-20", acceptances=1, suggestions=2),
            report_line("octocat", day="2026-02-16", acceptances=3, suggestions=4),
        )
        wires = decode_payload(payload)

        assert all(isinstance(w, ReportLine) for w in wires)
        assert [w.date for w in wires] == [
            datetime.date(2026, 1, 20),
            datetime.date(2026, 2, 16),
        ]


class TestPayloadDecoding:
    def test_detects_each_shape(
        self,
        report_line: "Callable[..., dict[str, Any]]",
    ) -> "None":
        payload = json.dumps([LEGACY_DAY, report_line()]).encode()
        legacy, line = decode_payload(payload)

        assert isinstance(legacy, LegacyDayMetrics)
        assert isinstance(line, ReportLine)
        assert legacy.shape == "legacy"
        assert line.shape == "report"

    def test_blank_lines_are_ignored(
        self,
        report_line: "Callable[..., dict[str, Any]]",
    ) -> "None":
        payload = (
            json.dumps(report_line("a")) + "\n\n" + json.dumps(report_line("b")) + "\n\n"
        ).encode()
        assert len(normalize(payload, RecordScope.ORGANIZATION)) == 2

    def test_empty_payload(self) -> "None":
        assert normalize(b"\n", RecordScope.ORGANIZATION) == []

    def test_unknown_shape_raises(self) -> "None":
        with pytest.raises(NormalizationError, match="unrecognized"):
            normalize(b'{"seats": 4}', RecordScope.ORGANIZATION)

    def test_non_object_item_raises(self) -> "None":
        with pytest.raises(NormalizationError):
            normalize(b"[1, 2]", RecordScope.ORGANIZATION)

    def test_invalid_json_line_raises(
        self,
        report_line: "Callable[..., dict[str, Any]]",
    ) -> "None":
        payload = (json.dumps(report_line()) + "\n{broken\n").encode()
        with pytest.raises(NormalizationError, match="line 2"):
            normalize(payload, RecordScope.ORGANIZATION)

    def test_non_numeric_counter_raises(self) -> "None":
        item = {"day": "2024-12-15", "total_suggestions_count": "many"}
        with pytest.raises(NormalizationError):
            normalize(json.dumps([item]).encode(), RecordScope.ORGANIZATION)

    def test_missing_date_raises(self) -> "None":
        with pytest.raises(NormalizationError, match="date"):
            normalize(b'{"user_login": "octocat"}', RecordScope.ORGANIZATION)

    def test_normalization_is_idempotent(
        self,
        report_line: "Callable[..., dict[str, Any]]",
        to_ndjson: "Callable[..., bytes]",
    ) -> "None":
        payload = to_ndjson(
            report_line("octocat", acceptances=3, suggestions=9),
            report_line(None, acceptances=7, suggestions=10),
        )
        assert normalize(payload, RecordScope.ORGANIZATION) == normalize(
            payload, RecordScope.ORGANIZATION
        )

    def test_invalid_utf8_raises(self) -> "None":
        payload = b'{"date": "2026-02-15", "user_login": "a\xff"}\n'
        with pytest.raises(NormalizationError, match="UTF-8"):
            normalize(payload, RecordScope.ORGANIZATION)

    def test_joined_array_bodies(
        self,
        report_line: "Callable[..., dict[str, Any]]",
    ) -> "None":
        # two download bodies, each a JSON array, joined with a newline
        payload = (
            json.dumps([report_line("a", acceptances=1)])
            + "\n"
            + json.dumps([report_line("b", acceptances=2)])
            + "\n"
        ).encode()
        records = normalize(payload, RecordScope.ORGANIZATION)

        assert [(r.subject_login, r.acceptances_count) for r in records] == [("a", 1), ("b", 2)]

    def test_joined_pretty_printed_bodies(
        self,
        report_line: "Callable[..., dict[str, Any]]",
    ) -> "None":
        payload = (
            json.dumps(report_line("a"), indent=2)
            + "\n"
            + json.dumps(report_line("b"), indent=2)
            + "\n"
        ).encode()
        records = normalize(payload, RecordScope.ORGANIZATION)

        assert [r.subject_login for r in records] == ["a", "b"]
