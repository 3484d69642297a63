import argparse
import datetime

from copilot_metrics.config import Config
from copilot_metrics.errors import ConfigError
from copilot_metrics.models import DateWindow, Granularity, ReportRequest, Scope

ROLLING_WINDOW_DAYS = 28


def _parse_date(value: "str") -> "datetime.date":
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD")


def _build_parser() -> "argparse.ArgumentParser":
    parser = argparse.ArgumentParser(
        prog="copilot-metrics",
        description="Collect GitHub Copilot usage metrics as a GitHub App",
    )
    parser.add_argument(
        "scope",
        choices=[s.value for s in Scope],
        help="What to collect: organization, enterprise, team or user metrics",
    )
    parser.add_argument(
        "--day",
        type=_parse_date,
        help="Single day to collect (default: yesterday)",
    )
    parser.add_argument(
        "--since",
        type=_parse_date,
        help="First day of a date range, requires --until",
    )
    parser.add_argument(
        "--until",
        type=_parse_date,
        help="Last day of a date range, requires --since",
    )
    parser.add_argument(
        "--rolling-28-day",
        dest="rolling",
        action="store_true",
        help="Collect the latest 28-day report instead of single days",
    )
    parser.add_argument(
        "--legacy",
        action="store_true",
        help="Use the legacy organization usage endpoint for the window",
    )
    parser.add_argument(
        "--team",
        dest="team_slug",
        help="Team slug (required for the team scope)",
    )
    parser.add_argument(
        "--user",
        dest="user_login",
        help="Restrict the user scope to a single login",
    )
    parser.add_argument(
        "--output.dir",
        dest="output_dir",
        default=None,
        help="Directory for report files (default: $OUTPUT_DIR or .)",
    )
    parser.add_argument(
        "--api.url",
        dest="api_url",
        default=None,
        help="GitHub API base URL (default: $GITHUB_API_URL or https://api.github.com)",
    )
    parser.add_argument(
        "--request.delay",
        dest="request_delay",
        type=float,
        default=1.0,
        help="Pause between per-date requests, in seconds (default: 1.0)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    return parser


def parse_args(
    argv: "list[str] | None" = None,
    today: "datetime.date | None" = None,
) -> "tuple[Config, ReportRequest]":
    """
    parses the command line into the run configuration and the
    report request. Date defaults are relative to `today`, yesterday
    being the most recent complete day.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)
    today = today or datetime.date.today()
    scope = Scope(args.scope)

    if args.day and (args.since or args.until or args.rolling):
        parser.error("--day cannot be combined with --since/--until or --rolling-28-day")
    if bool(args.since) != bool(args.until):
        parser.error("--since and --until must be given together")
    if args.rolling and args.since:
        parser.error("--rolling-28-day cannot be combined with --since/--until")
    if args.legacy and (scope != Scope.ORGANIZATION or args.rolling):
        parser.error(
            "--legacy is only available for the organization scope, "
            "without --rolling-28-day"
        )
    if scope == Scope.TEAM and not args.team_slug:
        parser.error("the team scope requires --team")
    if args.team_slug and scope != Scope.TEAM:
        parser.error("--team is only valid with the team scope")
    if args.user_login and scope != Scope.USER:
        parser.error("--user is only valid with the user scope")

    yesterday = today - datetime.timedelta(days=1)
    try:
        if args.rolling:
            window = DateWindow(
                start=yesterday - datetime.timedelta(days=ROLLING_WINDOW_DAYS - 1),
                end=yesterday,
            )
        elif args.since:
            window = DateWindow(start=args.since, end=args.until)
        else:
            window = DateWindow.single(args.day or yesterday)
    except ConfigError as exc:
        parser.error(str(exc))

    if args.rolling:
        granularity = Granularity.ROLLING_28_DAY
    elif args.legacy:
        granularity = Granularity.LEGACY_RANGE
    elif not window.is_single_day:
        granularity = Granularity.RANGE
    else:
        granularity = Granularity.DAY

    config = Config.from_env()
    if args.output_dir:
        config.output_dir = args.output_dir
    if args.api_url:
        config.api_url = args.api_url
    config.request_delay = args.request_delay
    config.log_level = args.log_level

    request = ReportRequest(
        scope=scope,
        granularity=granularity,
        target=config.target_for(scope),
        window=window,
        team_slug=args.team_slug,
        user_login=args.user_login,
    )
    return config, request
