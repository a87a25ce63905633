"""CLI entrypoint for storageroom."""

import logging
import sys
from contextlib import contextmanager
from dataclasses import asdict, replace
from pathlib import Path

import click
from rich.console import Console

from storageroom.aws.client import CloudGateway
from storageroom.config import Settings
from storageroom.costs import breakdown, sum_breakdowns
from storageroom.deployer import Deployer
from storageroom.diagnose import analyze
from storageroom.errors import DeploymentError, ResourceError
from storageroom.formatter import (
    format_buckets,
    format_cost,
    format_diagnosis,
    format_distributions,
    format_steps,
    format_sync_json,
    format_sync_table,
    terminal_line,
    to_json,
)
from storageroom.models import (
    BucketConfig,
    BucketRecord,
    BucketStatus,
    DeployAction,
    DeployRequest,
    Encryption,
    SyncAction,
    SyncUpdate,
    utc_now,
)
from storageroom.reconciler import (
    OUTPUT_BUCKET_ARN,
    OUTPUT_CDN_DOMAIN,
    OUTPUT_DISTRIBUTION_ID,
    Reconciler,
)
from storageroom.session import TerminalSession
from storageroom.store import BUCKETS, RecordStore
from storageroom.teardown import TeardownWorkflow

FORMAT_OPTION = click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)


@contextmanager
def _aws_errors():
    try:
        yield
    except ResourceError as e:
        raise click.ClickException(str(e)) from e


def _store(settings: Settings) -> RecordStore:
    return RecordStore(settings.data_dir)


def _gateway(settings: Settings) -> CloudGateway:
    return CloudGateway(region=settings.region, stack_prefix=settings.stack_prefix)


def _require_bucket(store: RecordStore, bucket_id: str) -> BucketRecord:
    record = store.bucket(bucket_id)
    if record is None:
        raise click.ClickException(f"No bucket with id {bucket_id}")
    return record


def _session() -> TerminalSession:
    """A session that echoes every line to the terminal as it arrives."""
    console = Console(highlight=False)
    session = TerminalSession()
    session.subscribe(lambda line: console.print(terminal_line(line)))
    return session


def _set_status(store: RecordStore, record: BucketRecord, status: BucketStatus) -> None:
    store.update(BUCKETS, record.id, {"status": status.value, "updatedAt": utc_now()})


def _persist(store: RecordStore, record: BucketRecord, update: SyncUpdate) -> None:
    if update.delete:
        store.remove_bucket(record)
    elif update.fields:
        store.update(BUCKETS, record.id, update.fields)


@click.group()
@click.option("--data-dir", type=click.Path(file_okay=False), default=None, help="Record store.")
@click.option("--cdk-dir", type=click.Path(file_okay=False), default=None, help="CDK app dir.")
@click.option("--region", default=None, help="AWS region.")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output.")
@click.pass_context
def main(ctx, data_dir, cdk_dir, region, verbose):
    """Manage S3 buckets and their CloudFront distributions."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = Settings.from_env()
    if data_dir:
        settings = replace(settings, data_dir=Path(data_dir))
    if cdk_dir:
        settings = replace(settings, cdk_dir=Path(cdk_dir))
    if region:
        settings = replace(settings, region=region)
    ctx.obj = settings


# -- sync -----------------------------------------------------------------


@main.command("check-status")
@click.argument("bucket_id")
@FORMAT_OPTION
@click.pass_obj
def check_status(settings, bucket_id, output_format):
    """Compare one bucket record with its live stack and bucket."""
    record = _require_bucket(_store(settings), bucket_id)
    with _aws_errors():
        status = Reconciler(_gateway(settings)).check(record)

    formatters = {"table": format_sync_table, "json": format_sync_json}
    click.echo(formatters[output_format]([status]))


@main.command("sync-all")
@FORMAT_OPTION
@click.option("--max-concurrent", type=int, default=5, help="Max concurrent checks.")
@click.option("--apply", "apply_actions", is_flag=True, help="Apply recommended actions.")
@click.pass_obj
def sync_all(settings, output_format, max_concurrent, apply_actions):
    """Check every bucket record. Exits 1 when any record is out of sync."""
    store = _store(settings)
    records = store.buckets()
    reconciler = Reconciler(_gateway(settings), max_concurrent=max_concurrent)
    statuses = reconciler.check_all(records)

    formatters = {"table": format_sync_table, "json": format_sync_json}
    click.echo(formatters[output_format](statuses))

    pending = [s for s in statuses if s.needs_sync]
    if not apply_actions:
        sys.exit(1 if pending else 0)

    by_id = {r.id: r for r in records}
    failures = 0
    for status in pending:
        record = by_id[status.bucket_id]
        try:
            update = reconciler.apply(record, status.recommended_action)
        except ResourceError as e:
            click.echo(f"{record.name}: {status.recommended_action.value} failed: {e}", err=True)
            failures += 1
            continue
        _persist(store, record, update)
        click.echo(f"{record.name}: applied {update.action.value}")
    sys.exit(1 if failures else 0)


@main.command("apply-sync")
@click.argument("bucket_id")
@click.argument("action", type=click.Choice([a.value for a in SyncAction]))
@click.pass_obj
def apply_sync(settings, bucket_id, action):
    """Apply a corrective ACTION to one bucket record."""
    store = _store(settings)
    record = _require_bucket(store, bucket_id)
    with _aws_errors():
        update = Reconciler(_gateway(settings)).apply(record, SyncAction(action))
    _persist(store, record, update)

    if update.delete:
        click.echo(f"Removed local record for {record.name}")
    elif update.fields:
        click.echo(f"{record.name} is now {update.fields.get('status', record.status.value)}")
    else:
        click.echo(f"Nothing to do for {record.name}")


# -- deployment -----------------------------------------------------------


@main.command()
@click.argument("bucket_id")
@click.option("--timeout", type=float, default=300.0, help="Seconds before the run is killed.")
@click.pass_obj
def deploy(settings, bucket_id, timeout):
    """Deploy the stack for a bucket and record its outputs."""
    store = _store(settings)
    record = _require_bucket(store, bucket_id)
    request = DeployRequest(
        action=DeployAction.DEPLOY,
        bucket_id=record.id,
        s3_bucket_name=record.s3_bucket_name,
        region=record.region,
    )
    try:
        request.validate()
    except ValueError as e:
        raise click.ClickException(f"Cannot deploy {record.name}: {e}") from e

    _set_status(store, record, BucketStatus.DEPLOYING)
    try:
        result = Deployer(settings.cdk_dir, timeout=timeout).run(request, _session())
    except DeploymentError as e:
        _set_status(store, record, BucketStatus.FAILED)
        raise click.ClickException(str(e)) from e
    except BaseException:
        _set_status(store, record, BucketStatus.FAILED)
        raise

    if not result.success:
        _set_status(store, record, BucketStatus.FAILED)
        sys.exit(1)

    outputs = result.outputs
    store.update(
        BUCKETS,
        record.id,
        {
            "status": BucketStatus.ACTIVE.value,
            "s3BucketArn": outputs.get(OUTPUT_BUCKET_ARN, record.s3_bucket_arn),
            "cloudFrontDomain": outputs.get(OUTPUT_CDN_DOMAIN, record.cloudfront_domain),
            "cloudFrontDistributionId": outputs.get(
                OUTPUT_DISTRIBUTION_ID, record.cloudfront_distribution_id
            ),
            "updatedAt": utc_now(),
        },
    )


@main.command()
@click.option("--timeout", type=float, default=300.0, help="Seconds before the run is killed.")
@click.pass_obj
def synth(settings, timeout):
    """Synthesize the CDK app without deploying."""
    try:
        result = Deployer(settings.cdk_dir, timeout=timeout).run(
            DeployRequest(action=DeployAction.SYNTH), _session()
        )
    except DeploymentError as e:
        raise click.ClickException(str(e)) from e
    sys.exit(0 if result.success else 1)


@main.command()
@click.argument("bucket_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_obj
def teardown(settings, bucket_id, yes):
    """Delete a bucket's distribution, contents, bucket and stack."""
    store = _store(settings)
    record = _require_bucket(store, bucket_id)
    if not yes:
        click.confirm(
            f"Delete {record.name} ({record.s3_bucket_name}) and all its files?", abort=True
        )

    _set_status(store, record, BucketStatus.DELETING)

    def on_step(steps):
        store.update(BUCKETS, record.id, {"teardown": [s.to_dict() for s in steps]})

    workflow = TeardownWorkflow(
        _gateway(settings),
        poll_interval=settings.poll_interval,
        max_poll_attempts=settings.max_poll_attempts,
        on_step=on_step,
    )
    try:
        result = workflow.run(record)
    except BaseException:
        # Steps persisted so far are kept so the next run resumes after them.
        _set_status(store, record, BucketStatus.FAILED)
        raise
    click.echo(format_steps(result.steps))

    if result.succeeded:
        store.remove_bucket(record)
        click.echo(f"Deleted {record.name}, {result.objects_removed} object(s) removed")
        return

    _set_status(store, record, BucketStatus.FAILED)
    click.echo(f"Teardown stopped at: {result.failed_step.label}", err=True)
    sys.exit(1)


# -- inspection -----------------------------------------------------------


@main.command()
@click.argument("bucket_id", required=False)
@click.option("--reads", type=int, default=0, help="Monthly GET requests.")
@click.option("--writes", type=int, default=None, help="Monthly PUT requests [object count]")
@click.option("--deletes", type=int, default=0, help="Monthly DELETE requests.")
@click.option("--lists", type=int, default=0, help="Monthly LIST requests.")
@click.option("--transfer-gb", type=float, default=0.0, help="Monthly data transfer out, in GB.")
@FORMAT_OPTION
@click.pass_obj
def cost(settings, bucket_id, reads, writes, deletes, lists, transfer_gb, output_format):
    """Estimate monthly cost from the live size of each bucket."""
    store = _store(settings)
    records = [_require_bucket(store, bucket_id)] if bucket_id else store.buckets()
    gateway = _gateway(settings)

    per_bucket = {}
    with _aws_errors():
        for record in records:
            if record.status != BucketStatus.ACTIVE:
                continue
            objects = list(gateway.list_objects(record.s3_bucket_name, region=record.region))
            per_bucket[record.name] = breakdown(
                storage_bytes=sum(o.size for o in objects),
                write_count=len(objects) if writes is None else writes,
                read_count=reads,
                delete_count=deletes,
                list_count=lists,
                transfer_bytes=transfer_gb * 1024**3,
            )
    total = sum_breakdowns(per_bucket.values())

    if output_format == "json":
        click.echo(
            to_json(
                {
                    "buckets": {name: asdict(c) for name, c in per_bucket.items()},
                    "total": asdict(total),
                }
            )
        )
        return

    for name, c in per_bucket.items():
        click.echo(format_cost(c, title=name))
    click.echo(format_cost(total, title="Total"))


@main.command()
@click.argument("source", type=click.File("r"), default="-")
@click.option("--command", "failed_command", default=None, help="The command that failed.")
@FORMAT_OPTION
def diagnose(source, failed_command, output_format):
    """Explain a failed CDK/AWS CLI run from its output (file or stdin)."""
    result = analyze(source.read(), failed_command)
    if output_format == "json":
        click.echo(to_json(asdict(result)))
    else:
        click.echo(format_diagnosis(result))


@main.command()
@FORMAT_OPTION
@click.pass_obj
def distributions(settings, output_format):
    """List CloudFront distributions and the buckets they serve."""
    with _aws_errors():
        items = _gateway(settings).list_distributions()
    linked = {r.cloudfront_domain: r for r in _store(settings).buckets() if r.cloudfront_domain}

    if output_format == "json":
        rows = []
        for d in items:
            record = linked.get(d.domain_name)
            rows.append({**asdict(d), "bucket_id": record.id if record else None})
        click.echo(to_json(rows))
    else:
        click.echo(format_distributions(items, linked))


@main.group()
def buckets():
    """Inspect and create bucket records."""


@buckets.command("list")
@FORMAT_OPTION
@click.pass_obj
def list_buckets(settings, output_format):
    records = _store(settings).buckets()
    if output_format == "json":
        click.echo(to_json([r.to_dict() for r in records]))
    else:
        click.echo(format_buckets(records))


@buckets.command("create")
@click.argument("name")
@click.option("--project", "project_id", required=True, help="Owning project id.")
@click.option("--versioning", is_flag=True, help="Enable object versioning.")
@click.option(
    "--encryption",
    type=click.Choice([e.value for e in Encryption]),
    default=Encryption.SERVER_SIDE.value,
)
@click.option("--backup", is_flag=True, help="Enable backups.")
@click.option("--max-file-size-mb", type=float, default=100)
@click.pass_obj
def create_bucket(settings, name, project_id, versioning, encryption, backup, max_file_size_mb):
    """Record a new pending bucket. Run ``deploy`` to provision it."""
    config = BucketConfig(
        versioning=versioning,
        encryption=Encryption(encryption),
        backup_enabled=backup,
        max_file_size_mb=max_file_size_mb,
    )
    record = BucketRecord.new(project_id, name, settings.region, config)
    _store(settings).append(BUCKETS, record.to_dict())
    click.echo(record.id)
