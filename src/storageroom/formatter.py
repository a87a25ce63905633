"""Output formatters for sync, teardown, cost and diagnosis results."""

import json
from dataclasses import asdict

from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from storageroom.aws.client import DistributionSummary
from storageroom.diagnose import Diagnosis
from storageroom.models import (
    BucketRecord,
    BucketSyncStatus,
    CostBreakdown,
    DeletionStep,
    EventLevel,
    StepStatus,
    SyncAction,
)
from storageroom.session import TerminalLine

ACTION_COLORS = {
    SyncAction.UPDATE_TO_ACTIVE: "green",
    SyncAction.UPDATE_TO_FAILED: "red",
    SyncAction.UPDATE_TO_PENDING: "yellow",
    SyncAction.CLEANUP: "magenta",
    SyncAction.ROLLBACK: "red",
    SyncAction.NONE: "dim",
}

STEP_COLORS = {
    StepStatus.PENDING: "dim",
    StepStatus.RUNNING: "yellow",
    StepStatus.DONE: "green",
    StepStatus.ERROR: "bold red",
}

LEVEL_COLORS = {
    EventLevel.INFO: "",
    EventLevel.WARN: "yellow",
    EventLevel.ERROR: "bold red",
    EventLevel.SUCCESS: "green",
    EventLevel.COMMAND: "cyan",
}

COST_LABELS = {
    "s3_storage": "S3 storage",
    "s3_put_requests": "S3 PUT requests",
    "s3_get_requests": "S3 GET requests",
    "s3_delete_requests": "S3 DELETE requests",
    "s3_list_requests": "S3 LIST requests",
    "s3_data_transfer": "S3 data transfer",
    "cf_data_transfer": "CloudFront data transfer",
    "cf_requests": "CloudFront requests",
}


def _render(renderable) -> str:
    console = Console(record=True, width=120)
    console.print(renderable)
    return console.export_text()


def to_json(data) -> str:
    return json.dumps(data, indent=2, default=str)


def sync_status_dict(status: BucketSyncStatus) -> dict:
    data = asdict(status)
    data["local_status"] = status.local_status.value
    data["recommended_action"] = status.recommended_action.value
    return data


def format_sync_json(statuses: list[BucketSyncStatus]) -> str:
    return to_json(
        {
            "summary": {
                "total_buckets": len(statuses),
                "needs_sync": sum(1 for s in statuses if s.needs_sync),
                "errors": sum(1 for s in statuses if s.error),
            },
            "buckets": [sync_status_dict(s) for s in statuses],
        }
    )


def format_sync_table(statuses: list[BucketSyncStatus]) -> str:
    """Format sync statuses as a Rich tree view, returned as a string."""
    if not statuses:
        return "No buckets recorded."

    tree = Tree("[bold]Sync Status[/bold]")
    for s in statuses:
        color = ACTION_COLORS.get(s.recommended_action, "dim")
        if s.error:
            tree.add(Text.from_markup(f"[bold red]{s.bucket_name}[/bold red] — error: ")).add(
                Text(s.error)
            )
            continue

        remote = s.stack_status or "NO STACK"
        branch = tree.add(
            Text.from_markup(
                f"[{color}]{s.bucket_name}[/{color}] ({s.s3_bucket_name})"
                f" — local {s.local_status.value}, remote {remote}"
                f" → {s.recommended_action.value}"
            )
        )
        branch.add(f"bucket exists: {'yes' if s.s3_bucket_exists else 'no'}")
        if s.stack_status_reason:
            branch.add(f"reason: {s.stack_status_reason}")
        if s.cloudfront_domain:
            branch.add(f"cdn: {s.cloudfront_domain} ({s.cloudfront_distribution_id or '?'})")
        for r in s.resources:
            branch.add(f"{r.logical_id} ({r.resource_type}) — {r.status}")

    return _render(tree)


def format_steps(steps: list[DeletionStep]) -> str:
    table = Table(title="Teardown")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Error")
    for step in steps:
        color = STEP_COLORS.get(step.status, "")
        table.add_row(step.label, Text(step.status.value, style=color), step.error or "")
    return _render(table)


def format_cost(cost: CostBreakdown, title: str = "Estimated monthly cost") -> str:
    table = Table(title=title)
    table.add_column("Component")
    table.add_column("USD", justify="right")
    for key, label in COST_LABELS.items():
        table.add_row(label, f"{getattr(cost, key):.4f}")
    table.add_row(Text("Total", style="bold"), Text(f"{cost.total:.4f}", style="bold"))
    return _render(table)


def format_diagnosis(diagnosis: Diagnosis) -> str:
    tree = Tree(f"[bold yellow]{diagnosis.title}[/bold yellow]")
    tree.add(diagnosis.diagnosis)
    if diagnosis.fix_commands:
        fixes = tree.add("[bold]Fix[/bold]")
        for fix in diagnosis.fix_commands:
            fixes.add(Text.from_markup(f"[cyan]{fix.command}[/cyan] — ").append(fix.description))
    if diagnosis.tips:
        tips = tree.add("[bold]Tips[/bold]")
        for tip in diagnosis.tips:
            tips.add(tip)
    return _render(tree)


def format_buckets(records: list[BucketRecord]) -> str:
    if not records:
        return "No buckets recorded."
    table = Table(title="Buckets")
    for column in ("ID", "Name", "S3 bucket", "Region", "Status", "CDN domain"):
        table.add_column(column)
    for r in records:
        table.add_row(r.id, r.name, r.s3_bucket_name, r.region, r.status.value, r.cloudfront_domain)
    return _render(table)


def format_distributions(
    distributions: list[DistributionSummary],
    linked: dict[str, BucketRecord],
) -> str:
    if not distributions:
        return "No distributions found."
    table = Table(title="CloudFront distributions")
    for column in ("ID", "Domain", "Status", "Enabled", "Linked bucket"):
        table.add_column(column)
    for d in distributions:
        record = linked.get(d.domain_name)
        table.add_row(
            d.id,
            d.domain_name,
            d.status,
            "yes" if d.enabled else "no",
            f"{record.name} ({record.status.value})" if record else "",
        )
    return _render(table)


def terminal_line(line: TerminalLine) -> Text:
    """Styled text for one session line."""
    prefix = f"[{line.source}] " if line.source else ""
    return Text(prefix + line.message, style=LEVEL_COLORS.get(line.level, ""))
