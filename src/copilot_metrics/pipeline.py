import asyncio
import datetime
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable

import structlog

from copilot_metrics.aggregator import build_snapshot
from copilot_metrics.auth import TokenIssuer
from copilot_metrics.config import Config
from copilot_metrics.errors import ApiError, CopilotMetricsError, EmptyResult, OutputError
from copilot_metrics.metrics import MetricsUpdater
from copilot_metrics.models import (
    AggregateSnapshot,
    Granularity,
    ReportRequest,
    Scope,
    UsageRecord,
)
from copilot_metrics.normalizer import decode_payload, to_record
from copilot_metrics.provider.base import MetricsSource
from copilot_metrics.record_tracker import RecordTracker
from copilot_metrics.report import build_bundle, report_basename, write_bundle

logger = structlog.get_logger()


class PipelineState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    AGGREGATING = "aggregating"
    EMITTING = "emitting"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RunResult:
    snapshot: "AggregateSnapshot"
    records: "list[UsageRecord]"
    paths: "dict[str, Path]"


class Pipeline:
    """
    Pipeline runs one collection end to end: authenticate, fetch,
    normalize, aggregate and emit. Everything is sequential; dates in
    a range are fetched one at a time with a fixed pause in between.

    Any error outside the per-date fetches of a range is fatal and
    propagates to the caller. A date that fails inside a range is
    recorded as "no data" and the run carries on.
    """

    def __init__(
        self,
        config: "Config",
        source: "MetricsSource",
        metrics_updater: "MetricsUpdater",
        sleep: "Callable[[float], Awaitable[None]]" = asyncio.sleep,
        clock: "Callable[[], float]" = time.time,
    ) -> "None":
        self._config = config
        self._source = source
        self._issuer = TokenIssuer(source)
        self._metrics = metrics_updater
        self._record_tracker = RecordTracker()
        self._sleep = sleep
        self._clock = clock
        self.state: "PipelineState" = PipelineState.UNAUTHENTICATED

    def _enter(self, state: "PipelineState", **fields: "object") -> "None":
        self.state = state
        logger.debug("pipeline_state", state=state.value, **fields)

    async def run(
        self,
        request: "ReportRequest",
        run_date: "datetime.date | None" = None,
    ) -> "RunResult":
        """
        runs the whole collection for request. The output files are
        written once, at the end, from a single snapshot.
        """
        started = time.monotonic()
        run_date = run_date or datetime.date.today()
        logger.info(
            "collection_start",
            scope=request.scope.value,
            granularity=request.granularity.value,
            target=request.target,
            start=request.window.start.isoformat(),
            end=request.window.end.isoformat(),
        )

        try:
            result = await self._run(request, run_date)
            duration = time.monotonic() - started
            result.paths["prom"] = self._write_run_metrics(request, run_date, duration)
        except CopilotMetricsError:
            self._enter(PipelineState.FAILED)
            raise

        self._enter(PipelineState.DONE)
        logger.info(
            "collection_done",
            records=len(result.records),
            duration_seconds=round(duration, 3),
        )
        return result

    def _write_run_metrics(
        self,
        request: "ReportRequest",
        run_date: "datetime.date",
        duration: "float",
    ) -> "Path":
        self._metrics.observe_run_duration(request.scope.value, duration)
        self._metrics.set_last_success(request.scope.value, self._clock())
        prom_path = Path(self._config.output_dir) / (
            report_basename(request, run_date) + ".prom"
        )
        try:
            self._metrics.write(prom_path)
        except OSError as exc:
            raise OutputError(f"could not write run metrics to {prom_path}: {exc}") from exc
        return prom_path

    async def _run(
        self,
        request: "ReportRequest",
        run_date: "datetime.date",
    ) -> "RunResult":
        credential = self._config.load_credential()
        token = await self._issuer.authenticate(credential, now=int(self._clock()))
        # acquired once, reused for every request of this run
        self._source.authorize(token)
        self._enter(PipelineState.AUTHENTICATED)

        members: "list[str] | None" = None
        if request.scope == Scope.TEAM:
            members = await self._source.fetch_team_members(
                request.target, request.team_slug or ""
            )

        payloads, skipped = await self._fetch(request)

        self._enter(PipelineState.NORMALIZING, payloads=len(payloads))
        records = self._select(request, self._normalize(request, payloads), members)
        records = self._record_tracker.unique(records)
        if self._record_tracker.duplicates:
            logger.info("duplicate_records_dropped", count=self._record_tracker.duplicates)
            self._metrics.inc_duplicates(self._record_tracker.duplicates)

        self._enter(PipelineState.AGGREGATING, records=len(records))
        dates = (
            []
            if request.granularity == Granularity.ROLLING_28_DAY
            else request.window.dates()
        )
        snapshot = build_snapshot(request, records, dates, skipped)

        self._enter(PipelineState.EMITTING)
        bundle = build_bundle(snapshot, records)
        paths = write_bundle(
            bundle, self._config.output_dir, report_basename(request, run_date)
        )
        return RunResult(snapshot=snapshot, records=records, paths=paths)

    async def _fetch(
        self,
        request: "ReportRequest",
    ) -> "tuple[list[bytes], dict[datetime.date, str]]":
        """
        returns the raw payloads for request, plus the dates of a
        range that were skipped and why.
        """
        skipped: "dict[datetime.date, str]" = {}
        source = self._source
        window = request.window

        if request.granularity == Granularity.ROLLING_28_DAY:
            self._enter(PipelineState.FETCHING, endpoint="rolling")
            payload = await self._tracked(
                "rolling", source.fetch_rolling(request.scope, request.target)
            )
            return [payload], skipped

        if request.granularity == Granularity.LEGACY_RANGE:
            self._enter(PipelineState.FETCHING, endpoint="legacy")
            payload = await self._tracked(
                "legacy",
                source.fetch_legacy_usage(request.target, window.start, window.end),
            )
            return [payload], skipped

        if not request.iterates_dates:
            self._enter(PipelineState.FETCHING, date=window.start.isoformat())
            payload = await self._tracked(
                "day", source.fetch_day(request.scope, request.target, window.start)
            )
            return [payload], skipped

        payloads: "list[bytes]" = []
        for i, day in enumerate(window.dates()):
            if i:
                # fixed pause to stay under the API rate limit
                await self._sleep(self._config.request_delay)

            self._enter(PipelineState.FETCHING, date=day.isoformat())
            try:
                payloads.append(
                    await self._tracked(
                        "day", source.fetch_day(request.scope, request.target, day)
                    )
                )
            except (ApiError, EmptyResult) as exc:
                reason = f"{type(exc).__name__}: {exc}"
                skipped[day] = reason
                self._metrics.inc_skipped_date()
                logger.warning("date_skipped", date=day.isoformat(), reason=reason)

        return payloads, skipped

    async def _tracked(self, endpoint: "str", fetch: "Awaitable[bytes]") -> "bytes":
        try:
            payload = await fetch
        except EmptyResult:
            self._metrics.inc_fetch(endpoint, "empty")
            raise
        except CopilotMetricsError:
            self._metrics.inc_fetch(endpoint, "error")
            raise

        self._metrics.inc_fetch(endpoint, "ok")
        return payload

    def _normalize(
        self,
        request: "ReportRequest",
        payloads: "list[bytes]",
    ) -> "list[UsageRecord]":
        records: "list[UsageRecord]" = []
        for payload in payloads:
            for wire in decode_payload(payload):
                records.append(to_record(wire, request.aggregate_scope))
                self._metrics.inc_records(wire.shape)
        return records

    @staticmethod
    def _select(
        request: "ReportRequest",
        records: "list[UsageRecord]",
        members: "list[str] | None",
    ) -> "list[UsageRecord]":
        """
        narrows organization or enterprise records down to a team's
        members or to a single user.
        """
        if request.scope == Scope.TEAM and members is not None:
            logins = {m.casefold() for m in members}
            return [
                r for r in records
                if r.subject_login is not None and r.subject_login.casefold() in logins
            ]

        if request.scope == Scope.USER and request.user_login:
            login = request.user_login.casefold()
            return [
                r for r in records
                if r.subject_login is not None and r.subject_login.casefold() == login
            ]

        return records
