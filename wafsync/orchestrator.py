"""Top-level sync driver: parse, compact, plan, confirm, reconcile."""

import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from .compactor import CidrCompactor, CompactionStats
from .config import Settings
from .errors import ConfigError, OperationAborted, RemoteError
from .models import AddressEntry, RemoteRule, RuleMode
from .parser import AddressParser, ParseResult
from .planner import CapacityPlanner, ChunkPlan
from .reconciler import (
    OperationKind,
    OperationOutcome,
    ReconcilePlan,
    ReconcileReport,
    RemoteRuleReconciler,
    RuleOperation,
    find_managed_rules,
)

logger = logging.getLogger(__name__)

# approve(summary, token) -> True when the operator typed the token
Approver = Callable[[str, str], bool]

BACKUP_TYPE = "firewall_config"


def deny_all(summary: str, token: str) -> bool:
    return False


@dataclass(frozen=True)
class ApplyPlan:
    """Everything ``apply`` will do, computed before any mutation."""

    mode: RuleMode
    parse_result: ParseResult
    entries: tuple[AddressEntry, ...]
    compaction: CompactionStats | None
    chunk_plan: ChunkPlan
    reconcile_plan: ReconcilePlan

    @property
    def optimized(self) -> bool:
        return self.compaction is not None and self.compaction.reduction > 0

    def describe(self) -> str:
        lines = [
            f"Mode: {self.mode.value}",
            f"Rule name: {self.mode.rule_name}",
            f"IPs parsed: {self.parse_result.valid_count} "
            f"({self.parse_result.error_count} rejected)",
            f"Entries to apply: {len(self.entries)}",
        ]
        if self.optimized:
            lines.append(
                f"CIDR optimization: {self.compaction.original_count} -> "
                f"{self.compaction.optimized_count} (-{self.compaction.reduction})"
            )
        lines.append(
            f"Rules needed: {self.chunk_plan.rules_needed} "
            f"(max {self.chunk_plan.capacity} IPs each)"
        )
        ops = self.reconcile_plan
        lines.append(
            f"Operations: {ops.removals} remove, {ops.updates} update, {ops.inserts} insert"
        )
        lines.extend(f"  - {op.describe()}" for op in ops.operations)
        lines.append(f"EFFECT: {self.mode.effect}")
        return "\n".join(lines)


@dataclass
class ApplyOutcome:
    plan: ApplyPlan
    report: ReconcileReport | None = None

    @property
    def dry_run(self) -> bool:
        return self.report is None


@dataclass(frozen=True)
class OptimizeResult:
    entries: list[AddressEntry]
    stats: CompactionStats
    capacity: int
    output_path: Path | None = None

    @property
    def fits(self) -> bool:
        return self.stats.optimized_count <= self.capacity


class SyncOrchestrator:
    """Drives every command against one project and one rule mode."""

    def __init__(
        self,
        settings: Settings,
        mode: RuleMode,
        client=None,
        approve: Approver = deny_all,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize orchestrator.

        Args:
            settings: Immutable settings
            mode: Resolved rule mode
            client: FirewallClient; only local commands work without one
            approve: Confirmation callback consulted before any mutation
            sleep: Sleep function for retries and purge pacing
        """
        self.settings = settings
        self.mode = mode
        self.client = client
        self.approve = approve
        self.sleep = sleep
        self.parser = AddressParser()
        self.planner = CapacityPlanner(settings.max_ips_per_condition)
        self.reconciler = RemoteRuleReconciler(
            client,
            mode,
            hostname=settings.rule_hostname or None,
            retry_policy=settings.retry_policy(),
            skip_removal=settings.skip_removal,
            sleep=sleep,
        )

    # -- local steps ---------------------------------------------------------

    def load(self, csv_path: str | Path) -> ParseResult:
        try:
            result = self.parser.parse_file(csv_path)
        except FileNotFoundError as e:
            raise ConfigError(str(e)) from e
        if not result.entries:
            raise ConfigError("No valid IPs found in CSV")
        return result

    def prepare_entries(
        self, entries: list[AddressEntry]
    ) -> tuple[list[AddressEntry], CompactionStats | None]:
        """Compact only when the list does not fit in a single rule."""
        capacity = self.settings.max_ips_per_condition
        if len(entries) <= capacity:
            return entries, None

        logger.warning(
            f"IP count ({len(entries)}) exceeds limit ({capacity} per rule)"
        )
        if self.settings.skip_optimize:
            return entries, None

        logger.info("Attempting CIDR optimization to reduce IP count...")
        compacted = CidrCompactor.compact(entries)
        stats = CompactionStats.measure(entries, compacted)
        if stats.optimized_count < stats.original_count:
            logger.info(
                f"CIDR optimization reduced entries from {stats.original_count} "
                f"to {stats.optimized_count} (-{stats.reduction})"
            )
            return compacted, stats
        logger.info("No CIDR optimization possible (IPs are not contiguous)")
        return entries, stats

    def build_apply_plan(
        self, parse_result: ParseResult, existing: list[RemoteRule]
    ) -> ApplyPlan:
        """Pure planning step: no I/O, no prompts."""
        entries, stats = self.prepare_entries(parse_result.entries)
        chunk_plan = self.planner.plan(entries)
        if chunk_plan.needs_chunking:
            logger.warning(
                f"Will create {chunk_plan.rules_needed} separate rules "
                f"(max {chunk_plan.capacity} IPs each)"
            )
        return ApplyPlan(
            mode=self.mode,
            parse_result=parse_result,
            entries=tuple(entries),
            compaction=stats,
            chunk_plan=chunk_plan,
            reconcile_plan=self.reconciler.plan(existing, chunk_plan),
        )

    def optimize(
        self, csv_path: str | Path, output_path: str | Path | None = None
    ) -> OptimizeResult:
        """Report (and optionally write) the compacted form of a CSV."""
        parse_result = self.load(csv_path)
        entries = parse_result.entries
        logger.info(f"Original IP count: {len(entries)}")

        compacted = CidrCompactor.compact(entries)
        stats = CompactionStats.measure(entries, compacted)
        written = None
        if output_path:
            written = Path(output_path)
            logger.info(f"Writing optimized list to: {written}")
            write_optimized_csv(written, compacted, csv_path, stats)
        return OptimizeResult(
            entries=compacted,
            stats=stats,
            capacity=self.settings.max_ips_per_condition,
            output_path=written,
        )

    # -- remote steps --------------------------------------------------------

    def _require_client(self):
        if self.client is None:
            raise ConfigError("This command needs API access (VERCEL_TOKEN, PROJECT_ID)")
        if not self.settings.project_id:
            raise ConfigError("PROJECT_ID is required")
        return self.client

    def _call(self, func: Callable[[], Any], description: str, attempts: int | None = None):
        policy = self.settings.retry_policy(attempts)
        return policy.call(func, description, sleep=self.sleep)

    def fetch_config(self) -> dict[str, Any]:
        client = self._require_client()
        return self._call(client.get_firewall_config, "Fetching firewall config")

    def managed_rules(self) -> list[RemoteRule]:
        return find_managed_rules(self.fetch_config(), self.mode.rule_name)

    def _confirm(self, summary: str, token: str) -> None:
        if not self.approve(summary, token):
            raise OperationAborted("Aborted. No changes were made.")

    def plan_apply(self, csv_path: str | Path) -> ApplyPlan:
        parse_result = self.load(csv_path)
        if self.client is None and self.settings.dry_run:
            logger.warning("No API access: planning as if no managed rules exist")
            return self.build_apply_plan(parse_result, [])

        self._require_client()
        try:
            existing = self.managed_rules()
        except RemoteError as e:
            logger.warning(
                f"Could not fetch current config ({e}). Will attempt to create new rule(s)."
            )
            existing = []
        return self.build_apply_plan(parse_result, existing)

    def apply(self, csv_path: str | Path) -> ApplyOutcome:
        """Sync the managed rules to the addresses in ``csv_path``.

        Raises:
            ConfigError: If the CSV is missing or holds no valid address
            OperationAborted: If the operator does not confirm
        """
        plan = self.plan_apply(csv_path)
        logger.info(f"Project ID: {self.settings.project_id}")
        logger.info(f"Hostname scope: {self.settings.rule_hostname or 'project-wide'}")

        if self.settings.dry_run:
            logger.info("DRY RUN - No changes made")
            return ApplyOutcome(plan)

        summary = plan.describe()
        if plan.reconcile_plan.removals and plan.reconcile_plan.inserts:
            summary += "\nExisting rules will be REMOVED before new rules are created."
        self._confirm(summary, "yes")

        logger.info("Applying rule(s)...")
        report = self.reconciler.execute(plan.reconcile_plan)
        return ApplyOutcome(plan, report)

    def show(self) -> list[RemoteRule]:
        logger.info(f"Fetching managed rules for project {self.settings.project_id}...")
        return self.managed_rules()

    def _set_active(self, active: bool) -> ReconcileReport:
        client = self._require_client()
        rules = [r for r in self.managed_rules() if r.active != active]
        state = "enabled" if active else "disabled"
        report = ReconcileReport()
        if not rules:
            logger.info(f"No rules to change; all managed rules are already {state}")
            return report

        if not active:
            summary = (
                f"This will DISABLE {len(rules)} rule(s) named '{self.mode.rule_name}'.\n"
                "Traffic will not be filtered by them until re-enabled."
            )
            self._confirm(summary, "yes")

        for rule in rules:
            op = RuleOperation(OperationKind.UPDATE, rule.name, rule.id)
            try:
                self._call(
                    lambda: client.set_rule_active(rule.id, active),
                    f"Setting rule {rule.id} active={active}",
                )
            except RemoteError as e:
                logger.error(f"Failed to update rule {rule.id}: {e}")
                report.outcomes.append(OperationOutcome(op, False, e))
                continue
            logger.info(f"Rule {rule.name} ({rule.id}) {state}")
            report.outcomes.append(OperationOutcome(op, True))
        return report

    def disable(self) -> ReconcileReport:
        return self._set_active(False)

    def enable(self) -> ReconcileReport:
        return self._set_active(True)

    def remove(self) -> RemoteRule:
        """Permanently delete the first managed rule.

        Raises:
            ConfigError: If there is no managed rule
        """
        client = self._require_client()
        rules = self.managed_rules()
        if not rules:
            raise ConfigError("No managed rule found")
        rule = rules[0]
        summary = (
            f"This will PERMANENTLY DELETE rule '{rule.name}' ({rule.id}).\n"
            "Traffic will no longer be matched by this rule."
        )
        self._confirm(summary, "DELETE")
        self._call(lambda: client.remove_rule(rule.id), f"Removing rule {rule.id}")
        logger.info("Rule removed successfully")
        return rule

    def purge(self) -> ReconcileReport:
        """Remove every managed rule, including chunked parts."""
        client = self._require_client()
        rules = self.managed_rules()
        report = ReconcileReport()
        if not rules:
            logger.info(
                f"No auto-managed rules found. Only rules named "
                f"'{self.mode.rule_name}' would be removed."
            )
            return report

        settings = self.settings
        logger.info(
            f"Options: delay={settings.purge_delay}s, retries={settings.purge_retries}, "
            f"disable_first={settings.purge_disable_first}, reverse={settings.purge_reverse}"
        )
        if settings.dry_run:
            logger.info(f"DRY RUN - Would remove {len(rules)} rule(s)")
            report.skipped.extend(
                RuleOperation(OperationKind.REMOVE, r.name, r.id) for r in rules
            )
            return report

        listing = "\n".join(f"  - {r.id}: {r.name} (active={r.active})" for r in rules)
        summary = (
            f"This will PERMANENTLY DELETE all {len(rules)} rule(s) listed below.\n"
            f"{listing}\nRules with other names are NOT affected."
        )
        self._confirm(summary, "PURGE")

        if settings.purge_reverse:
            rules = list(reversed(rules))

        if settings.purge_disable_first:
            logger.info(f"Disabling all {len(rules)} rule(s) first...")
            for rule in rules:
                try:
                    self._call(
                        lambda: client.set_rule_active(rule.id, False),
                        f"Disabling rule {rule.id}",
                    )
                except RemoteError as e:
                    logger.warning(f"Could not disable {rule.id}: {e}")
                self.sleep(settings.purge_delay)

        for rule in rules:
            op = RuleOperation(OperationKind.REMOVE, rule.name, rule.id)
            logger.info(f"Removing: {rule.name} ({rule.id})...")
            try:
                self._call(
                    lambda: client.remove_rule(rule.id),
                    f"Removing rule {rule.id}",
                    attempts=settings.purge_retries,
                )
            except RemoteError as e:
                logger.warning(f"Failed to remove {rule.id} (may need manual cleanup): {e}")
                report.outcomes.append(OperationOutcome(op, False, e))
            else:
                report.outcomes.append(OperationOutcome(op, True))
            self.sleep(settings.purge_delay)

        logger.info(f"Purge complete: {report.summary()}")
        return report

    def backup(self, backup_dir: str | Path | None = None) -> Path:
        """Write the current firewall configuration to a JSON backup file."""
        config = self.fetch_config()
        directory = Path(backup_dir or self.settings.backup_dir)
        directory.mkdir(parents=True, exist_ok=True)
        os.chmod(directory, 0o700)

        now = datetime.now(timezone.utc)
        path = directory / f"backup-{self.settings.project_id}-{now:%Y%m%d-%H%M%S}.json"
        document = {
            "metadata": {
                "project_id": self.settings.project_id,
                "team_id": self.settings.team_id,
                "backup_timestamp": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "backup_user": os.environ.get("USER", "unknown"),
                "type": BACKUP_TYPE,
            },
            "config": config,
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2)
        os.chmod(path, 0o600)
        logger.info(f"Backup created: {path}")
        return path

    def restore(self, backup_file: str | Path) -> ReconcileReport:
        """Replace the managed rules with the ones stored in a backup.

        Raises:
            ConfigError: If the backup is missing, of the wrong type, or holds
                no managed rule
        """
        client = self._require_client()
        path = Path(backup_file)
        try:
            with open(path, encoding="utf-8") as f:
                document = json.load(f)
        except FileNotFoundError as e:
            raise ConfigError(f"Backup file not found: {path}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Backup file is not valid JSON: {path}") from e

        metadata = document.get("metadata") or {}
        if metadata.get("type") != BACKUP_TYPE:
            raise ConfigError(f"Invalid backup file type: {metadata.get('type')}")

        backed_up = find_managed_rules(document.get("config"), self.mode.rule_name)
        if not backed_up:
            raise ConfigError("No managed rule found in backup")

        backup_project = metadata.get("project_id")
        if backup_project != self.settings.project_id:
            logger.warning(
                f"Backup is for project {backup_project} but restoring to "
                f"{self.settings.project_id}"
            )

        existing = self.managed_rules()
        ip_count = sum(len(r.ip_addresses) for r in backed_up)
        summary = (
            f"Restore {len(backed_up)} rule(s) with {ip_count} IPs from "
            f"{metadata.get('backup_timestamp')}.\n"
            f"{len(existing)} existing managed rule(s) will be removed first."
        )
        self._confirm(summary, "yes")

        report = ReconcileReport()
        for rule in existing:
            op = RuleOperation(OperationKind.REMOVE, rule.name, rule.id)
            try:
                self._call(lambda: client.remove_rule(rule.id), f"Removing rule {rule.id}")
            except RemoteError as e:
                logger.error(f"Failed to remove existing rule {rule.id}: {e}")
                report.outcomes.append(OperationOutcome(op, False, e))
                continue
            report.outcomes.append(OperationOutcome(op, True))

        for index, rule in enumerate(backed_up):
            op = RuleOperation(OperationKind.INSERT, rule.name)
            try:
                self._call(
                    lambda: client.insert_rule(rule.to_value()),
                    f"Restoring rule {rule.name}",
                )
            except RemoteError as e:
                logger.error(f"Failed to restore rule {rule.name}: {e}")
                report.outcomes.append(OperationOutcome(op, False, e))
                report.skipped.extend(
                    RuleOperation(OperationKind.INSERT, r.name)
                    for r in backed_up[index + 1 :]
                )
                break
            report.outcomes.append(OperationOutcome(op, True))

        logger.info(f"Restore finished: {report.summary()}")
        return report


def write_optimized_csv(
    path: Path,
    entries: list[AddressEntry],
    source: str | Path,
    stats: CompactionStats,
) -> None:
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    with open(path, "w", encoding="utf-8") as f:
        f.write("# Optimized IP Allowlist\n")
        f.write(f"# Generated from: {source}\n")
        f.write(
            f"# Original: {stats.original_count} entries, "
            f"Optimized: {stats.optimized_count} entries\n"
        )
        f.write(f"# Generated: {generated}\n")
        f.write("#\n")
        f.write("# ip,vendor_name,notes\n")
        for entry in entries:
            f.write(f"{entry},Optimized,Auto-aggregated CIDR\n")
