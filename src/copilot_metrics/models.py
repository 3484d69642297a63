import datetime
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from copilot_metrics.errors import ConfigError


class Scope(str, Enum):
    """
    Scope of a collection run, as requested by the operator.
    """

    ORGANIZATION = "organization"
    ENTERPRISE = "enterprise"
    TEAM = "team"
    USER = "user"


class RecordScope(str, Enum):
    """
    Scope of a single canonical record. Team and single-user runs
    both produce user-level records.
    """

    ORGANIZATION = "organization"
    ENTERPRISE = "enterprise"
    USER = "user"


class Granularity(str, Enum):
    DAY = "day"
    RANGE = "range"
    ROLLING_28_DAY = "rolling_28_day"
    LEGACY_RANGE = "legacy_range"


@dataclass(frozen=True, slots=True)
class InstallationCredential:
    """
    InstallationCredential identifies the GitHub App and the
    installation it acts on behalf of. Supplied externally and
    immutable for the run.
    """

    app_id: "str"
    # PEM encoded RSA private key
    private_key: "str"
    installation_id: "str"


@dataclass(frozen=True, slots=True)
class SignedAssertion:
    """
    SignedAssertion is the short-lived JWT proving the app's
    identity. Minted once per run and never reused.
    """

    header: "dict[str, str]"
    claims: "dict[str, int | str]"
    # compact serialization: header.payload.signature
    token: "str"

    @property
    def issued_at(self) -> "int":
        return int(self.claims["iat"])

    @property
    def expires_at(self) -> "int":
        return int(self.claims["exp"])


@dataclass(frozen=True, slots=True)
class AccessToken:
    """
    AccessToken is the opaque installation token. It lives for the
    remainder of a single run and is never persisted.
    """

    value: "str"

    def __repr__(self) -> "str":
        return "AccessToken(value='***')"


@dataclass(frozen=True, slots=True)
class EditorUsage:
    name: "str"
    suggestions: "int"
    acceptances: "int"


@dataclass(frozen=True, slots=True)
class LanguageUsage:
    name: "str"
    suggestions: "int"


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """
    UsageRecord is the canonical per-subject-per-day unit every
    wire shape is normalized into.
    """

    date: "datetime.date"
    scope: "RecordScope"
    # only set for user-level records
    subject_login: "str | None"
    suggestions_count: "int" = 0
    acceptances_count: "int" = 0
    lines_suggested: "int" = 0
    lines_accepted: "int" = 0
    # ide_chat_turns + dotcom_chat_turns
    chat_turns: "int" = 0
    ide_chat_turns: "int" = 0
    dotcom_chat_turns: "int" = 0
    active_chat_users: "int" = 0
    engaged_users: "int" = 0
    editor_breakdown: "tuple[EditorUsage, ...]" = ()
    language_breakdown: "tuple[LanguageUsage, ...]" = ()

    @property
    def key(self) -> "tuple[datetime.date, RecordScope, str | None]":
        return (self.date, self.scope, self.subject_login)

    @property
    def is_active(self) -> "bool":
        return self.acceptances_count > 0

    @property
    def is_user_level(self) -> "bool":
        return self.subject_login is not None


@dataclass(frozen=True, slots=True)
class DateWindow:
    """
    DateWindow is an inclusive range of calendar dates.
    """

    start: "datetime.date"
    end: "datetime.date"

    def __post_init__(self) -> "None":
        if self.start > self.end:
            raise ConfigError(
                f"window start {self.start.isoformat()} is after "
                f"end {self.end.isoformat()}"
            )

    @classmethod
    def single(cls, day: "datetime.date") -> "DateWindow":
        return cls(start=day, end=day)

    def dates(self) -> "list[datetime.date]":
        """
        expands the window into one date per day, in calendar order.
        """
        days = (self.end - self.start).days
        return [self.start + datetime.timedelta(days=i) for i in range(days + 1)]

    @property
    def is_single_day(self) -> "bool":
        return self.start == self.end


@dataclass(frozen=True, slots=True)
class ReportRequest:
    """
    ReportRequest describes what to collect: which scope, at which
    granularity, for which target and dates.
    """

    scope: "Scope"
    granularity: "Granularity"
    # organization login or enterprise slug
    target: "str"
    window: "DateWindow"
    team_slug: "str | None" = None
    user_login: "str | None" = None

    @property
    def aggregate_scope(self) -> "RecordScope":
        """
        scope given to report lines that carry no user login.
        """
        if self.scope in (Scope.ENTERPRISE, Scope.USER):
            return RecordScope.ENTERPRISE
        return RecordScope.ORGANIZATION

    @property
    def iterates_dates(self) -> "bool":
        return self.granularity == Granularity.RANGE


@dataclass(frozen=True, slots=True)
class Totals:
    """
    Totals is the sum of every numeric field over a set of records.
    active_users counts active user-level records plus the engaged
    users reported by aggregate records.
    """

    records: "int" = 0
    subjects: "int" = 0
    active_users: "int" = 0
    suggestions: "int" = 0
    acceptances: "int" = 0
    lines_suggested: "int" = 0
    lines_accepted: "int" = 0
    chat_turns: "int" = 0
    ide_chat_turns: "int" = 0
    dotcom_chat_turns: "int" = 0
    active_chat_users: "int" = 0
    engaged_users: "int" = 0


@dataclass(frozen=True, slots=True)
class DailyTotals:
    date: "datetime.date"
    # None when the date had no data
    totals: "Totals | None"
    # reason recorded for a tolerated per-date failure
    note: "str | None" = None

    @property
    def has_data(self) -> "bool":
        return self.totals is not None


@dataclass(frozen=True, slots=True)
class Growth:
    """
    Growth is the percentage change of a headline metric between the
    first and last dates of a window. percent is None when the first
    value is zero.
    """

    metric: "str"
    first_date: "datetime.date"
    last_date: "datetime.date"
    first: "int"
    last: "int"
    percent: "Decimal | None"

    @property
    def computable(self) -> "bool":
        return self.percent is not None


@dataclass(frozen=True, slots=True)
class RankedSubject:
    login: "str"
    acceptances: "int"
    suggestions: "int"


@dataclass(frozen=True, slots=True)
class BreakdownEntry:
    name: "str"
    suggestions: "int"
    acceptances: "int" = 0


@dataclass(frozen=True, slots=True)
class AggregateSnapshot:
    """
    AggregateSnapshot holds everything derived from one fixed set of
    records. It is never mutated after the aggregator builds it.
    """

    request: "ReportRequest"
    totals: "Totals"
    acceptance_rate: "Decimal"
    acceptance_rate_floor: "int"
    daily: "tuple[DailyTotals, ...]"
    average_active_users: "int | None"
    average_acceptance_rate: "Decimal | None"
    growth: "tuple[Growth, ...]"
    top_users: "tuple[RankedSubject, ...]"
    top_editors: "tuple[BreakdownEntry, ...]"
    top_languages: "tuple[BreakdownEntry, ...]"

    @property
    def days_with_data(self) -> "int":
        return sum(1 for d in self.daily if d.has_data)


@dataclass(frozen=True, slots=True)
class ReportBundle:
    records: "str"
    table: "str"
    narrative: "str"
