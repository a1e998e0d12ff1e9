"""Command-line entry point."""

import argparse
import logging
import sys
from enum import IntEnum

from pydantic import ValidationError

from .client import FirewallClient, create_http_client
from .config import Settings, find_vercel_project, locate_vercel_project
from .errors import (
    ConfigError,
    OperationAborted,
    PartialFailure,
    ReconciliationFailed,
    RemoteError,
)
from .models import RuleMode
from .orchestrator import SyncOrchestrator, deny_all
from .planner import rules_needed
from .reconciler import ReconcileReport, ReconcileStatus

logger = logging.getLogger("wafsync")

COMMANDS_WITHOUT_API = {"optimize"}


class ExitCode(IntEnum):
    OK = 0
    VALIDATION_ERROR = 1
    REMOTE_ERROR = 2
    PARTIAL_FAILURE = 3
    ABORTED = 4


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wafsync",
        description="Bulk manage IP allowlist/bypass firewall rules from a CSV file.",
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in RuleMode],
        help="Rule mode (overrides RULE_MODE)",
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Show the plan without changing anything"
    )
    parser.add_argument(
        "--yes", action="store_true", help="Confirm destructive actions without prompting"
    )
    parser.add_argument("--log-level", help="Logging level (overrides LOG_LEVEL)")

    sub = parser.add_subparsers(dest="command", required=True)
    apply_cmd = sub.add_parser("apply", help="Create/update rules with IPs from a CSV")
    apply_cmd.add_argument("csv_file")
    sub.add_parser("show", help="Show current managed rules")
    sub.add_parser("disable", help="Disable managed rules")
    sub.add_parser("enable", help="Re-enable managed rules")
    sub.add_parser("remove", help="Remove a single managed rule")
    sub.add_parser("purge", help="Remove ALL managed rules")
    optimize_cmd = sub.add_parser("optimize", help="Optimize IPs into CIDR ranges")
    optimize_cmd.add_argument("csv_file")
    optimize_cmd.add_argument("output", nargs="?")
    backup_cmd = sub.add_parser("backup", help="Export current firewall configuration")
    backup_cmd.add_argument("--dir", dest="backup_dir")
    restore_cmd = sub.add_parser("restore", help="Restore managed rules from a backup")
    restore_cmd.add_argument("backup_file")
    setup_cmd = sub.add_parser("setup", help="Show environment setup instructions")
    setup_cmd.add_argument("project_dir", nargs="?", default=".")
    return parser


def prompt_approval(summary: str, token: str) -> bool:
    print()
    print("=" * 46)
    print("  WARNING")
    print("=" * 46)
    print(summary)
    print()
    answer = input(f"Type '{token}' to confirm: ")
    return answer.strip() == token


def auto_approve(summary: str, token: str) -> bool:
    logger.info(f"Confirmation '{token}' given via --yes")
    return True


def resolve_rule_mode(settings: Settings, interactive: bool) -> RuleMode:
    """Pick the rule mode from settings, or ask when attached to a terminal.

    Raises:
        ConfigError: If no mode is configured and no terminal is available
    """
    if settings.mode is not None:
        return settings.mode
    if not interactive:
        raise ConfigError(
            "RULE_MODE must be set in non-interactive mode "
            "('deny' = allowlist, 'bypass' = bypass WAF for listed IPs)"
        )
    print("Select rule mode:")
    print("  1) allowlist - Block ALL traffic except listed IPs")
    print("  2) bypass    - Bypass WAF for listed IPs, allow all other traffic")
    choice = input("Enter choice [1-2]: ").strip()
    if choice == "1":
        return RuleMode.DENY
    if choice == "2":
        return RuleMode.BYPASS
    raise ConfigError("Invalid selection. Please enter 1 or 2.")


def connect(settings: Settings) -> tuple[Settings, FirewallClient]:
    """Create an authenticated client and resolve the team slug."""
    if not settings.project_id:
        raise ConfigError("PROJECT_ID is required (or run inside a linked project)")
    if not settings.vercel_token:
        raise ConfigError("VERCEL_TOKEN is required")

    client = FirewallClient(create_http_client(settings), settings)
    try:
        client.validate_auth()
    except RemoteError:
        client.close()
        raise
    if settings.team_id and not settings.team_slug:
        try:
            slug = client.fetch_team_slug(settings.team_id)
        except RemoteError as e:
            logger.debug(f"Could not resolve team slug: {e}")
            slug = None
        if slug:
            logger.info(f"Resolved TEAM_SLUG: {slug}")
            settings = settings.model_copy(update={"team_slug": slug})
            client.settings = settings
    return settings, client


def report_exit_code(report: ReconcileReport) -> ExitCode:
    if report.status is ReconcileStatus.FAILED:
        raise ReconciliationFailed(report.summary(), report)
    if report.status is ReconcileStatus.PARTIAL:
        raise PartialFailure(report.summary(), report)
    return ExitCode.OK


def print_rules(orchestrator: SyncOrchestrator) -> None:
    rules = orchestrator.show()
    print()
    print(f"Managed rules for {orchestrator.settings.project_id}:")
    if not rules:
        print("  No managed rule configured. Use 'wafsync apply <csv>' to create one.")
        return
    for rule in rules:
        print()
        print(f"Rule:     {rule.name}")
        print(f"Rule ID:  {rule.id}")
        print(f"Status:   {'ACTIVE' if rule.active else 'DISABLED'}")
        print(f"IP Count: {len(rule.ip_addresses)}")
        print(f"Scope:    {rule.hostname or 'project-wide'}")
        for ip in rule.ip_addresses:
            print(f"  - {ip}")


def print_optimize(orchestrator: SyncOrchestrator, csv_file: str, output: str | None) -> None:
    result = orchestrator.optimize(csv_file, output)
    stats = result.stats
    print()
    print("CIDR Optimization Results")
    print(f"  Original entries:  {stats.original_count}")
    print(f"  Optimized entries: {stats.optimized_count}")
    print(f"  Reduction:         {stats.reduction} entries ({stats.reduction_pct}%)")
    print(f"  CIDR ranges: {stats.cidr_count}, Individual IPs: {stats.single_count}")
    if result.fits:
        print(f"  Optimized list fits within the {result.capacity} per rule limit.")
    else:
        rules = rules_needed(stats.optimized_count, result.capacity)
        print(f"  Still exceeds {result.capacity} per rule; {rules} rules needed when applying.")
    for entry in result.entries[:20]:
        print(f"  {entry}")


def print_setup(project_dir: str) -> None:
    """Print what project auto-detection finds and how to configure the rest."""
    print()
    print("wafsync setup")
    print()
    project_file = locate_vercel_project(project_dir)
    if project_file is None:
        logger.warning(
            f"No .vercel/project.json found in {project_dir} or parent directories"
        )
        print("Run 'vercel link' in your project directory to enable auto-detection,")
        print("or set environment variables manually:")
        print()
        print('  export PROJECT_ID="prj_xxxxx"')
        print('  export TEAM_ID="team_xxxxx"    # optional, for team projects')
        print('  export VERCEL_TOKEN="your-token-here"')
        return

    detected = find_vercel_project(project_dir) or {}
    project_id = detected.get("projectId")
    team_id = detected.get("orgId")
    print(f"Found Vercel config: {project_file}")
    print("Detected configuration:")
    if project_id:
        print(f"  PROJECT_ID: {project_id}")
    if team_id:
        print(f"  TEAM_ID:    {team_id}")
    print()
    print("For CI/CD, export these (or add them to .env):")
    if project_id:
        print(f'  export PROJECT_ID="{project_id}"')
    if team_id:
        print(f'  export TEAM_ID="{team_id}"')
    print('  export VERCEL_TOKEN="your-token-here"')
    print()
    print("Create a token at: https://vercel.com/account/tokens")
    print("Required scopes: read:project, write:project")


def run(args: argparse.Namespace, settings: Settings, interactive: bool) -> ExitCode:
    if args.command == "setup":
        print_setup(args.project_dir)
        return ExitCode.OK
    if args.command in COMMANDS_WITHOUT_API:
        orchestrator = SyncOrchestrator(settings, settings.mode or RuleMode.DENY)
        print_optimize(orchestrator, args.csv_file, args.output)
        return ExitCode.OK

    settings = settings.with_detected_project()
    mode = resolve_rule_mode(settings, interactive)
    client = None
    if settings.vercel_token or not (args.command == "apply" and settings.dry_run):
        settings, client = connect(settings)

    if args.yes:
        approve = auto_approve
    elif interactive:
        approve = prompt_approval
    else:
        approve = deny_all

    orchestrator = SyncOrchestrator(settings, mode, client, approve)
    try:
        if args.command == "apply":
            outcome = orchestrator.apply(args.csv_file)
            print()
            print(outcome.plan.describe())
            if outcome.dry_run:
                print("\nDRY RUN - No changes made")
                return ExitCode.OK
            return report_exit_code(outcome.report)
        if args.command == "show":
            print_rules(orchestrator)
            return ExitCode.OK
        if args.command == "disable":
            return report_exit_code(orchestrator.disable())
        if args.command == "enable":
            return report_exit_code(orchestrator.enable())
        if args.command == "remove":
            orchestrator.remove()
            return ExitCode.OK
        if args.command == "purge":
            return report_exit_code(orchestrator.purge())
        if args.command == "backup":
            path = orchestrator.backup(args.backup_dir)
            print(f"Backup created: {path}")
            return ExitCode.OK
        if args.command == "restore":
            return report_exit_code(orchestrator.restore(args.backup_file))
    finally:
        if client is not None:
            client.close()
    raise ConfigError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        overrides = {}
        if args.mode:
            overrides["rule_mode"] = args.mode
        if args.dry_run:
            overrides["dry_run"] = True
        if args.log_level:
            overrides["log_level"] = args.log_level
        settings = Settings(**overrides)
    except ValidationError as e:
        setup_logging("INFO")
        logger.error(f"Invalid configuration: {e}")
        return ExitCode.VALIDATION_ERROR

    setup_logging(settings.log_level)
    interactive = sys.stdin.isatty()

    try:
        return run(args, settings, interactive)
    except OperationAborted as e:
        logger.error(str(e))
        return ExitCode.ABORTED
    except ConfigError as e:
        logger.error(str(e))
        return ExitCode.VALIDATION_ERROR
    except PartialFailure as e:
        logger.warning(
            f"Partial failure: {e}. Some rules could not be removed/created - check dashboard."
        )
        return ExitCode.PARTIAL_FAILURE
    except ReconciliationFailed as e:
        logger.error(f"Reconciliation failed: {e}. Check dashboard for partially applied rules.")
        return ExitCode.REMOTE_ERROR
    except RemoteError as e:
        logger.error(f"Remote failure: {e}")
        return ExitCode.REMOTE_ERROR


if __name__ == "__main__":
    sys.exit(main())
