import datetime
from typing import Any, Protocol

from copilot_metrics.models import AccessToken, Scope


class MetricsSource(Protocol):
    """
    MetricsSource stands as the boundary to the Copilot metrics API.

    Implementations return raw payload bytes; decoding them is left
    to the normalizer. Download-link indirections are resolved here,
    so callers only ever see the concatenated report body.
    """

    async def request_installation_token(
        self,
        assertion: "str",
        installation_id: "str",
    ) -> "dict[str, Any]": ...

    def authorize(self, token: "AccessToken") -> "None": ...

    async def fetch_day(
        self,
        scope: "Scope",
        target: "str",
        day: "datetime.date",
    ) -> "bytes": ...

    async def fetch_rolling(
        self,
        scope: "Scope",
        target: "str",
    ) -> "bytes": ...

    async def fetch_legacy_usage(
        self,
        target: "str",
        since: "datetime.date",
        until: "datetime.date",
    ) -> "bytes": ...

    async def fetch_team_members(
        self,
        target: "str",
        team_slug: "str",
    ) -> "list[str]": ...

    async def close(self) -> "None": ...
