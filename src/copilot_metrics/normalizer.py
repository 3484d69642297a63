import datetime
import json
import re
from dataclasses import dataclass
from typing import Any, ClassVar, Union

from copilot_metrics.errors import NormalizationError
from copilot_metrics.models import EditorUsage, LanguageUsage, RecordScope, UsageRecord

LEGACY_KEYS = frozenset(
    {
        "total_suggestions_count",
        "total_acceptances_count",
        "total_lines_suggested",
        "total_lines_accepted",
        "breakdown",
    }
)
REPORT_KEYS = frozenset(
    {
        "user_login",
        "copilot_ide_code_completions",
        "copilot_ide_chat",
        "copilot_dotcom_chat",
    }
)

_DECODER = json.JSONDecoder()
_WHITESPACE = re.compile(r"\s*")


@dataclass(frozen=True, slots=True)
class LegacyBreakdown:
    editor: "str | None"
    language: "str | None"
    suggestions_count: "int" = 0
    acceptances_count: "int" = 0
    # nested (name, suggestions_count) pairs, when the entry carries them
    languages: "tuple[tuple[str, int], ...]" = ()


@dataclass(frozen=True, slots=True)
class LegacyDayMetrics:
    shape: "ClassVar[str]" = "legacy"

    day: "datetime.date"
    total_active_users: "int" = 0
    total_suggestions_count: "int" = 0
    total_acceptances_count: "int" = 0
    total_lines_suggested: "int" = 0
    total_lines_accepted: "int" = 0
    total_active_chat_users: "int" = 0
    total_chat_turns: "int" = 0
    breakdown: "tuple[LegacyBreakdown, ...]" = ()


@dataclass(frozen=True, slots=True)
class LanguageStats:
    name: "str"
    total_code_suggestions: "int" = 0
    total_code_acceptances: "int" = 0


@dataclass(frozen=True, slots=True)
class EditorStats:
    name: "str"
    # None when the editor only reports per-language counts
    total_code_suggestions: "int | None" = None
    total_code_acceptances: "int | None" = None
    languages: "tuple[LanguageStats, ...]" = ()


@dataclass(frozen=True, slots=True)
class CompletionStats:
    total_code_suggestions: "int" = 0
    total_code_acceptances: "int" = 0
    total_code_lines_suggested: "int" = 0
    total_code_lines_accepted: "int" = 0
    total_engaged_users: "int" = 0
    editors: "tuple[EditorStats, ...]" = ()
    languages: "tuple[LanguageStats, ...]" = ()


@dataclass(frozen=True, slots=True)
class ChatStats:
    total_chats: "int" = 0
    total_engaged_users: "int" = 0


@dataclass(frozen=True, slots=True)
class ReportLine:
    shape: "ClassVar[str]" = "report"

    date: "datetime.date"
    user_login: "str | None"
    completions: "CompletionStats"
    ide_chat: "ChatStats"
    dotcom_chat: "ChatStats"
    total_engaged_users: "int" = 0
    total_active_users: "int" = 0


WireRecord = Union[LegacyDayMetrics, ReportLine]


def _count(data: "dict[str, Any]", key: "str") -> "int":
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool):
        raise NormalizationError(f"field {key!r} is not a number: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise NormalizationError(f"field {key!r} is not a number: {value!r}") from exc


def _optional_count(data: "dict[str, Any]", key: "str") -> "int | None":
    if data.get(key) is None:
        return None
    return _count(data, key)


def _object(data: "dict[str, Any]", key: "str") -> "dict[str, Any]":
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise NormalizationError(f"field {key!r} is not an object")
    return value


def _objects(data: "dict[str, Any]", key: "str") -> "list[dict[str, Any]]":
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise NormalizationError(f"field {key!r} is not a list of objects")
    return value


def _date(data: "dict[str, Any]", *keys: "str") -> "datetime.date":
    for key in keys:
        value = data.get(key)
        if value:
            try:
                # tolerate full timestamps, only the calendar day matters
                return datetime.date.fromisoformat(str(value)[:10])
            except ValueError as exc:
                raise NormalizationError(f"field {key!r} is not a date: {value!r}") from exc
    raise NormalizationError(f"record has none of the date fields {', '.join(keys)}")


def _languages(entries: "list[dict[str, Any]]") -> "tuple[LanguageStats, ...]":
    return tuple(
        LanguageStats(
            name=str(lang.get("name") or "unknown"),
            total_code_suggestions=_count(lang, "total_code_suggestions"),
            total_code_acceptances=_count(lang, "total_code_acceptances"),
        )
        for lang in entries
    )


def _decode_legacy(item: "dict[str, Any]") -> "LegacyDayMetrics":
    breakdown = tuple(
        LegacyBreakdown(
            editor=entry.get("editor") or None,
            language=entry.get("language") or None,
            suggestions_count=_count(entry, "suggestions_count"),
            acceptances_count=_count(entry, "acceptances_count"),
            languages=tuple(
                (str(lang["name"]), _count(lang, "suggestions_count"))
                for lang in _objects(entry, "languages")
                if lang.get("name")
            ),
        )
        for entry in _objects(item, "breakdown")
    )
    return LegacyDayMetrics(
        day=_date(item, "day", "date"),
        total_active_users=_count(item, "total_active_users"),
        total_suggestions_count=_count(item, "total_suggestions_count"),
        total_acceptances_count=_count(item, "total_acceptances_count"),
        total_lines_suggested=_count(item, "total_lines_suggested"),
        total_lines_accepted=_count(item, "total_lines_accepted"),
        total_active_chat_users=_count(item, "total_active_chat_users"),
        total_chat_turns=_count(item, "total_chat_turns"),
        breakdown=breakdown,
    )


def _decode_report_line(item: "dict[str, Any]") -> "ReportLine":
    completions = _object(item, "copilot_ide_code_completions")
    editors = tuple(
        EditorStats(
            name=str(editor.get("name") or "unknown"),
            total_code_suggestions=_optional_count(editor, "total_code_suggestions"),
            total_code_acceptances=_optional_count(editor, "total_code_acceptances"),
            languages=tuple(
                lang
                for model in _objects(editor, "models")
                for lang in _languages(_objects(model, "languages"))
            ),
        )
        for editor in _objects(completions, "editors")
    )
    ide_chat = _object(item, "copilot_ide_chat")
    dotcom_chat = _object(item, "copilot_dotcom_chat")
    login = item.get("user_login")

    return ReportLine(
        date=_date(item, "date", "day"),
        user_login=str(login) if login else None,
        completions=CompletionStats(
            total_code_suggestions=_count(completions, "total_code_suggestions"),
            total_code_acceptances=_count(completions, "total_code_acceptances"),
            total_code_lines_suggested=_count(completions, "total_code_lines_suggested"),
            total_code_lines_accepted=_count(completions, "total_code_lines_accepted"),
            total_engaged_users=_count(completions, "total_engaged_users"),
            editors=editors,
            languages=_languages(_objects(completions, "languages")),
        ),
        ide_chat=ChatStats(
            total_chats=_count(ide_chat, "total_chats"),
            total_engaged_users=_count(ide_chat, "total_engaged_users"),
        ),
        dotcom_chat=ChatStats(
            total_chats=_count(dotcom_chat, "total_chats"),
            total_engaged_users=_count(dotcom_chat, "total_engaged_users"),
        ),
        total_engaged_users=_count(item, "total_engaged_users"),
        total_active_users=_count(item, "total_active_users"),
    )


def decode_item(item: "Any") -> "WireRecord":
    """
    detects the wire shape of a single decoded JSON item.
    """
    if not isinstance(item, dict):
        raise NormalizationError(f"expected a JSON object, got {type(item).__name__}")

    keys = item.keys()
    if LEGACY_KEYS & keys:
        return _decode_legacy(item)
    if REPORT_KEYS & keys:
        return _decode_report_line(item)

    raise NormalizationError(
        f"unrecognized payload shape with fields: {', '.join(sorted(keys))}"
    )


def _json_items(text: "str") -> "list[Any]":
    """
    reads consecutive JSON documents separated by whitespace. Top-level
    arrays are flattened, so one array, NDJSON lines and several joined
    download bodies all decode to a flat list of items.
    """
    items: "list[Any]" = []
    pos = _WHITESPACE.match(text, 0).end()
    while pos < len(text):
        try:
            document, pos = _DECODER.raw_decode(text, pos)
        except json.JSONDecodeError as exc:
            raise NormalizationError(f"line {exc.lineno} is not valid JSON") from exc

        if isinstance(document, list):
            items.extend(document)
        else:
            items.append(document)
        pos = _WHITESPACE.match(text, pos).end()
    return items


def decode_payload(payload: "bytes") -> "list[WireRecord]":
    """
    decodes a raw payload into wire records. Three shapes are known:

    - the legacy ``/copilot/usage`` day aggregate, flat ``total_*``
      fields plus a ``breakdown`` list keyed by editor and language;
    - report lines from the ``*-1-day`` reports, with
      ``copilot_ide_code_completions``, ``copilot_ide_chat`` and
      ``copilot_dotcom_chat`` sub-objects;
    - the ``*-28-day`` reports, which share the report line structure.

    The payload may hold one JSON array, newline-delimited objects, or
    several such bodies joined with newlines.
    """
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise NormalizationError("payload is not valid UTF-8") from exc

    return [decode_item(item) for item in _json_items(text)]


def _legacy_editors(breakdown: "tuple[LegacyBreakdown, ...]") -> "tuple[EditorUsage, ...]":
    totals: "dict[str, list[int]]" = {}
    for entry in breakdown:
        if entry.editor is None:
            continue
        counts = totals.setdefault(entry.editor, [0, 0])
        counts[0] += entry.suggestions_count
        counts[1] += entry.acceptances_count
    return tuple(EditorUsage(name, s, a) for name, (s, a) in totals.items())


def _legacy_languages(breakdown: "tuple[LegacyBreakdown, ...]") -> "tuple[LanguageUsage, ...]":
    totals: "dict[str, int]" = {}
    for entry in breakdown:
        if entry.languages:
            for name, suggestions in entry.languages:
                totals[name] = totals.get(name, 0) + suggestions
        elif entry.language is not None:
            totals[entry.language] = totals.get(entry.language, 0) + entry.suggestions_count
    return tuple(LanguageUsage(name, s) for name, s in totals.items())


def _report_editors(completions: "CompletionStats") -> "tuple[EditorUsage, ...]":
    totals: "dict[str, list[int]]" = {}
    for editor in completions.editors:
        suggestions = editor.total_code_suggestions
        if suggestions is None:
            suggestions = sum(lang.total_code_suggestions for lang in editor.languages)
        acceptances = editor.total_code_acceptances
        if acceptances is None:
            acceptances = sum(lang.total_code_acceptances for lang in editor.languages)
        counts = totals.setdefault(editor.name, [0, 0])
        counts[0] += suggestions
        counts[1] += acceptances
    return tuple(EditorUsage(name, s, a) for name, (s, a) in totals.items())


def _report_languages(completions: "CompletionStats") -> "tuple[LanguageUsage, ...]":
    nested = [lang for editor in completions.editors for lang in editor.languages]
    # top-level languages only when editors carry no per-language data
    languages = nested or list(completions.languages)

    totals: "dict[str, int]" = {}
    for lang in languages:
        totals[lang.name] = totals.get(lang.name, 0) + lang.total_code_suggestions
    return tuple(LanguageUsage(name, s) for name, s in totals.items())


def to_record(wire: "WireRecord", aggregate_scope: "RecordScope") -> "UsageRecord":
    """
    maps a decoded wire record onto the canonical UsageRecord. Missing
    or null counters are already zero at this point. Report lines
    without a user login are pure aggregates and take the aggregate
    scope of the request. The mapping is pure: the same wire record
    always gives the same UsageRecord.
    """
    if isinstance(wire, LegacyDayMetrics):
        return UsageRecord(
            date=wire.day,
            scope=aggregate_scope,
            subject_login=None,
            suggestions_count=wire.total_suggestions_count,
            acceptances_count=wire.total_acceptances_count,
            lines_suggested=wire.total_lines_suggested,
            lines_accepted=wire.total_lines_accepted,
            chat_turns=wire.total_chat_turns,
            # the legacy endpoint only knew IDE chat
            ide_chat_turns=wire.total_chat_turns,
            dotcom_chat_turns=0,
            active_chat_users=wire.total_active_chat_users,
            engaged_users=wire.total_active_users,
            editor_breakdown=_legacy_editors(wire.breakdown),
            language_breakdown=_legacy_languages(wire.breakdown),
        )

    completions = wire.completions
    chat_turns = wire.ide_chat.total_chats + wire.dotcom_chat.total_chats

    if wire.user_login is not None:
        scope = RecordScope.USER
        engaged = int(completions.total_code_suggestions > 0 or chat_turns > 0)
        chat_users = int(chat_turns > 0)
    else:
        scope = aggregate_scope
        engaged = (
            wire.total_engaged_users
            or wire.total_active_users
            or completions.total_engaged_users
        )
        chat_users = wire.ide_chat.total_engaged_users + wire.dotcom_chat.total_engaged_users

    return UsageRecord(
        date=wire.date,
        scope=scope,
        subject_login=wire.user_login,
        suggestions_count=completions.total_code_suggestions,
        acceptances_count=completions.total_code_acceptances,
        lines_suggested=completions.total_code_lines_suggested,
        lines_accepted=completions.total_code_lines_accepted,
        chat_turns=chat_turns,
        ide_chat_turns=wire.ide_chat.total_chats,
        dotcom_chat_turns=wire.dotcom_chat.total_chats,
        active_chat_users=chat_users,
        engaged_users=engaged,
        editor_breakdown=_report_editors(completions),
        language_breakdown=_report_languages(completions),
    )


def normalize(payload: "bytes", aggregate_scope: "RecordScope") -> "list[UsageRecord]":
    """
    decodes a raw payload and returns its canonical records, in
    payload order.
    """
    return [to_record(wire, aggregate_scope) for wire in decode_payload(payload)]
