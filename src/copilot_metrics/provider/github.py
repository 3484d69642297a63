import datetime
from typing import Any

import httpx
import structlog

from copilot_metrics.config import DEFAULT_API_URL
from copilot_metrics.errors import ApiError, AuthError, EmptyResult, NotFoundLinks
from copilot_metrics.models import AccessToken, Scope

logger = structlog.get_logger()

GITHUB_API_VERSION = "2022-11-28"

# each tuple is (path template, error raised when the report has no links)
DAY_REPORTS: "dict[Scope, tuple[str, type[EmptyResult]]]" = {
    Scope.ORGANIZATION: (
        "/orgs/{target}/copilot/metrics/reports/organization-1-day",
        EmptyResult,
    ),
    Scope.TEAM: (
        "/orgs/{target}/copilot/metrics/reports/organization-1-day",
        EmptyResult,
    ),
    Scope.ENTERPRISE: (
        "/enterprises/{target}/copilot/metrics/reports/enterprise-1-day",
        EmptyResult,
    ),
    Scope.USER: (
        "/enterprises/{target}/copilot/metrics/reports/users-1-day",
        NotFoundLinks,
    ),
}

ROLLING_REPORTS: "dict[Scope, str]" = {
    Scope.ORGANIZATION: "/orgs/{target}/copilot/metrics/reports/organization-28-day/latest",
    Scope.TEAM: "/orgs/{target}/copilot/metrics/reports/organization-28-day/latest",
    Scope.ENTERPRISE: "/enterprises/{target}/copilot/metrics/reports/enterprise-28-day/latest",
    Scope.USER: "/enterprises/{target}/copilot/metrics/reports/users-28-day/latest",
}

LEGACY_USAGE_PATH = "/orgs/{target}/copilot/usage"
TEAM_MEMBERS_PATH = "/orgs/{target}/teams/{team}/members"


class GitHubMetricsSource:
    """
    GitHubMetricsSource implements the MetricsSource protocol for the
    GitHub REST API. Report endpoints either answer inline or with a
    list of download links; links are fetched one after the other and
    their bodies joined with newlines into a single payload.
    """

    def __init__(
        self,
        api_url: "str" = DEFAULT_API_URL,
        timeout: "float" = 30.0,
    ) -> "None":
        self._api_url = api_url.rstrip("/")
        self._client: "httpx.AsyncClient" = httpx.AsyncClient(
            timeout=timeout,
            headers={"Accept": "application/vnd.github+json"},
        )
        self._token: "AccessToken | None" = None

    @property
    def api_url(self) -> "str":
        return self._api_url

    def authorize(self, token: "AccessToken") -> "None":
        """
        installs the installation token used by every later API call.
        """
        self._token = token

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def request_installation_token(
        self,
        assertion: "str",
        installation_id: "str",
    ) -> "dict[str, Any]":
        url = f"{self._api_url}/app/installations/{installation_id}/access_tokens"
        logger.debug("github_token_exchange", installation_id=installation_id)

        resp = await self._send(
            "POST", url, headers={"Authorization": f"Bearer {assertion}"}
        )
        data = self._decode(resp)
        if not isinstance(data, dict):
            raise ApiError("unexpected token exchange response")
        return data

    async def fetch_day(
        self,
        scope: "Scope",
        target: "str",
        day: "datetime.date",
    ) -> "bytes":
        """
        fetches a one-day report. Missing links raise EmptyResult,
        or NotFoundLinks for the per-user enterprise report.
        """
        path, missing = DAY_REPORTS[scope]
        url = self._api_url + path.format(target=target)
        return await self._fetch_report(url, {"day": day.isoformat()}, missing)

    async def fetch_rolling(
        self,
        scope: "Scope",
        target: "str",
    ) -> "bytes":
        """
        fetches the latest 28-day report. Missing links are fatal.
        """
        url = self._api_url + ROLLING_REPORTS[scope].format(target=target)
        return await self._fetch_report(url, None, NotFoundLinks)

    async def fetch_legacy_usage(
        self,
        target: "str",
        since: "datetime.date",
        until: "datetime.date",
    ) -> "bytes":
        url = self._api_url + LEGACY_USAGE_PATH.format(target=target)
        params = {"since": since.isoformat(), "until": until.isoformat()}
        return await self._fetch_report(url, params, EmptyResult)

    async def fetch_team_members(
        self,
        target: "str",
        team_slug: "str",
    ) -> "list[str]":
        """
        lists team member logins, following Link header pagination.
        """
        url: "str | None" = self._api_url + TEAM_MEMBERS_PATH.format(
            target=target, team=team_slug
        )
        params: "dict[str, str] | None" = {"per_page": "100"}
        logins: "list[str]" = []

        while url:
            resp = await self._send("GET", url, headers=self._auth_headers(), params=params)
            data = self._decode(resp)
            if not isinstance(data, list):
                raise ApiError("unexpected team members response")

            logins.extend(str(m["login"]) for m in data if m.get("login"))

            # the next link already carries the query string
            url = resp.links.get("next", {}).get("url")
            params = None

        if not logins:
            raise EmptyResult(f"no members found for team {team_slug}")

        logger.debug("github_team_members", team=team_slug, count=len(logins))
        return logins

    async def _fetch_report(
        self,
        url: "str",
        params: "dict[str, str] | None",
        missing: "type[EmptyResult]",
    ) -> "bytes":
        logger.debug("github_fetch_report", url=url, params=params)
        resp = await self._send("GET", url, headers=self._auth_headers(), params=params)
        data = self._decode(resp)

        # inline answer, nothing left to download
        if isinstance(data, list):
            return resp.content

        links = data.get("download_links") if isinstance(data, dict) else None
        if not links:
            raise missing(f"no download links found at {url}")

        bodies: "list[bytes]" = []
        for link in links:
            logger.debug("github_download_report")
            # signed links must not receive the API bearer token
            download = await self._send("GET", str(link))
            if download.status_code >= 400:
                raise ApiError(f"report download failed with HTTP {download.status_code}")
            bodies.append(download.content.rstrip(b"\n"))

        return b"\n".join(bodies) + b"\n"

    def _auth_headers(self) -> "dict[str, str]":
        if self._token is None:
            raise AuthError("no installation token, authenticate first")
        return {
            "Authorization": f"Bearer {self._token.value}",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }

    async def _send(
        self,
        method: "str",
        url: "str",
        headers: "dict[str, str] | None" = None,
        params: "dict[str, str] | None" = None,
    ) -> "httpx.Response":
        try:
            return await self._client.request(method, url, headers=headers, params=params)
        except httpx.HTTPError as exc:
            raise ApiError(f"request to {url} failed: {exc}") from exc

    @staticmethod
    def _decode(resp: "httpx.Response") -> "Any":
        """
        parses a JSON answer and surfaces GitHub error messages.
        """
        try:
            data = resp.json()
        except ValueError:
            data = None

        if isinstance(data, dict) and data.get("message"):
            raise ApiError(str(data["message"]))
        if resp.status_code >= 400:
            raise ApiError(f"HTTP {resp.status_code}")
        if data is None:
            raise ApiError("response body is not valid JSON")

        return data
