import asyncio

import structlog

from copilot_metrics.cli import parse_args
from copilot_metrics.config import Config
from copilot_metrics.errors import CopilotMetricsError
from copilot_metrics.logging import setup_logging
from copilot_metrics.metrics import MetricsUpdater
from copilot_metrics.models import ReportRequest
from copilot_metrics.pipeline import Pipeline, RunResult
from copilot_metrics.provider.github import GitHubMetricsSource

logger = structlog.get_logger()


async def collect(config: "Config", request: "ReportRequest") -> "RunResult":
    """
    runs one collection against the GitHub API, closing the HTTP
    client whatever the outcome.
    """
    source = GitHubMetricsSource(api_url=config.api_url)
    pipeline = Pipeline(config, source, MetricsUpdater())
    try:
        return await pipeline.run(request)
    finally:
        await source.close()


def main(argv: "list[str] | None" = None) -> "None":
    config, request = parse_args(argv)
    setup_logging(config.log_level)

    try:
        # configuration problems surface before any network call
        config.validate(request.scope)
        result = asyncio.run(collect(config, request))
    except CopilotMetricsError as exc:
        logger.error(
            "collection_failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise SystemExit(1) from exc

    logger.info(
        "collection_completed",
        outputs={kind: str(path) for kind, path in result.paths.items()},
    )


if __name__ == "__main__":
    main()
