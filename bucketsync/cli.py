"""CLI interface for bucketsync."""

import logging
import signal
from pathlib import Path
from typing import Any, Optional

import click

from .config import ENV_INTERVAL, ENV_LOCAL, ENV_MIN_TIME_DELTA, ENV_REMOTE, config
from .exceptions import BucketSyncError, SyncConfigError, SyncCycleError
from .output import OutputFormatter
from .sync import (
    RegistryStore,
    SyncAction,
    SyncEngine,
    SyncLoop,
    SyncPair,
    open_replica,
)
from .utils import DEFAULT_MAX_BACKOFF, format_size

logger = logging.getLogger(__name__)


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="bucketsync")
@click.pass_context
def main(ctx: Any, quiet: bool, json: bool, verbose: bool) -> None:
    """bucketsync - Keep a local directory and a remote bucket in sync."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("bucketsync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


def _resolve_pair(
    ctx: Any,
    out: OutputFormatter,
    local: Optional[str],
    remote: Optional[str],
    **options: Any,
) -> SyncPair:
    """Build a sync pair from arguments, falling back to the configuration."""
    local = local or config.local_dir
    remote = remote or config.remote_url
    if not local or not remote:
        out.error("Local directory and remote location are required.")
        out.info("Pass them as arguments or run 'bucketsync init' first")
        ctx.exit(1)

    try:
        if options.get("min_time_delta") is None:
            options["min_time_delta"] = config.min_time_delta
        if options.get("interval") is None:
            options["interval"] = config.interval
        pair = SyncPair(local=Path(local), remote=remote, **options)
        pair.validate_local()
        return pair
    except SyncConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        raise  # Unreachable, but helps type checker


def _remote_store(ctx: Any, out: OutputFormatter, remote: Optional[str]) -> RegistryStore:
    remote = remote or config.remote_url
    if not remote:
        out.error("Remote location is required.")
        out.info("Pass it as an argument or run 'bucketsync init' first")
        ctx.exit(1)
    return RegistryStore(open_replica(remote))


@main.command()
@click.option(
    "--local",
    "-l",
    prompt="Local directory to sync",
    type=click.Path(file_okay=False),
    help="Local directory to sync",
)
@click.option(
    "--remote",
    "-r",
    prompt="Remote location (e.g. s3://bucket/prefix)",
    help="Remote location URI",
)
@click.option("--interval", type=float, default=None, help="Seconds between cycles")
@click.option(
    "--min-time-delta",
    type=float,
    default=None,
    help="Modification times closer than this (seconds) are equal",
)
@click.pass_context
def init(
    ctx: Any,
    local: str,
    remote: str,
    interval: Optional[float],
    min_time_delta: Optional[float],
) -> None:
    """Initialize bucketsync configuration.

    Stores the sync pair in ~/.config/bucketsync/config for future use.
    """
    out: OutputFormatter = ctx.obj["out"]

    local_path = Path(local).expanduser().resolve()
    if not local_path.is_dir():
        out.warning(f"Local directory does not exist yet: {local_path}")

    values = {ENV_LOCAL: str(local_path), ENV_REMOTE: remote.strip()}
    if interval is not None:
        values[ENV_INTERVAL] = str(interval)
    if min_time_delta is not None:
        values[ENV_MIN_TIME_DELTA] = str(min_time_delta)

    try:
        config.save(**values)
    except (SyncConfigError, OSError) as e:
        out.error(f"Failed to save configuration: {e}")
        ctx.exit(1)

    out.success(f"✓ Configuration saved to {config.get_config_path()}")


@main.command()
@click.argument("local", type=str, required=False)
@click.argument("remote", type=str, required=False)
@click.option(
    "--dry-run", is_flag=True, help="Show what would be synced without syncing"
)
@click.option(
    "--workers",
    type=int,
    default=1,
    help="Number of parallel workers for transfers (default: 1)",
)
@click.option(
    "--tie-winner",
    type=click.Choice(["local", "remote"]),
    default="local",
    help="Side that wins conflicts with equal modification times",
)
@click.option(
    "--min-time-delta",
    type=float,
    default=None,
    help="Modification times closer than this (seconds) are equal",
)
@click.option(
    "--ignore",
    "-i",
    multiple=True,
    help="Glob pattern of keys to ignore (repeatable)",
)
@click.pass_context
def sync(
    ctx: Any,
    local: Optional[str],
    remote: Optional[str],
    dry_run: bool,
    workers: int,
    tie_winner: str,
    min_time_delta: Optional[float],
    ignore: tuple[str, ...],
) -> None:
    """Run one reconciliation cycle between LOCAL and REMOTE.

    REMOTE is any fsspec URI (s3://, gs://, memory://, ...) or a local path.
    Both default to the configured sync pair.

    Examples:
        bucketsync sync ./docs s3://bucket/docs
        bucketsync sync --dry-run
        bucketsync sync ./data gs://bucket/data --workers 4 -i "*.tmp"
    """
    out: OutputFormatter = ctx.obj["out"]
    pair = _resolve_pair(
        ctx,
        out,
        local,
        remote,
        max_workers=workers,
        tie_winner=tie_winner,
        min_time_delta=min_time_delta,
        ignore=list(ignore),
    )

    if not out.quiet:
        out.info(f"Local:  {pair.local}")
        out.info(f"Remote: {pair.remote}")
        out.info("")

    try:
        engine = SyncEngine.from_pair(pair, out)
        stats = engine.run_cycle(dry_run=dry_run)
    except KeyboardInterrupt:
        out.warning("\nSync cancelled by user")
        ctx.exit(130)
    except SyncCycleError as e:
        out.error(str(e))
        ctx.exit(1)
    except BucketSyncError as e:
        out.error(f"Sync failed: {e}")
        ctx.exit(1)

    if out.json_output:
        out.output_json(stats)


@main.command()
@click.argument("local", type=str, required=False)
@click.argument("remote", type=str, required=False)
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between sync cycles (default: configured or 5)",
)
@click.option(
    "--max-cycles",
    type=int,
    default=None,
    help="Stop after this many cycles",
)
@click.option(
    "--max-backoff",
    type=float,
    default=DEFAULT_MAX_BACKOFF,
    help="Maximum wait in seconds after failed cycles",
)
@click.option(
    "--workers",
    type=int,
    default=1,
    help="Number of parallel workers for transfers (default: 1)",
)
@click.option(
    "--tie-winner",
    type=click.Choice(["local", "remote"]),
    default="local",
    help="Side that wins conflicts with equal modification times",
)
@click.option(
    "--min-time-delta",
    type=float,
    default=None,
    help="Modification times closer than this (seconds) are equal",
)
@click.option(
    "--ignore",
    "-i",
    multiple=True,
    help="Glob pattern of keys to ignore (repeatable)",
)
@click.pass_context
def watch(
    ctx: Any,
    local: Optional[str],
    remote: Optional[str],
    interval: Optional[float],
    max_cycles: Optional[int],
    max_backoff: float,
    workers: int,
    tie_winner: str,
    min_time_delta: Optional[float],
    ignore: tuple[str, ...],
) -> None:
    """Continuously keep LOCAL and REMOTE in sync.

    Runs a reconciliation cycle every --interval seconds until interrupted
    with Ctrl+C or SIGTERM. The cycle in progress always completes first.
    """
    out: OutputFormatter = ctx.obj["out"]
    pair = _resolve_pair(
        ctx,
        out,
        local,
        remote,
        interval=interval,
        max_workers=workers,
        tie_winner=tie_winner,
        min_time_delta=min_time_delta,
        ignore=list(ignore),
    )

    engine_out = OutputFormatter(json_output=out.json_output, quiet=True)
    engine = SyncEngine.from_pair(pair, engine_out)
    loop = SyncLoop(engine, interval=pair.interval, max_backoff=max_backoff)

    def _handle_signal(signum: int, frame: Any) -> None:
        loop.stop()

    previous = {
        signum: signal.signal(signum, _handle_signal)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }

    out.info(f"Watching {pair.name} every {pair.interval:g}s (Ctrl+C to stop)")
    try:
        cycles = loop.run(max_cycles=max_cycles)
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    if out.json_output:
        out.output_json({"cycles": cycles, "last_stats": loop.last_stats})
    else:
        out.success(f"Stopped after {cycles} cycle(s)")


@main.command()
@click.argument("local", type=str, required=False)
@click.argument("remote", type=str, required=False)
@click.option("--all", "show_all", is_flag=True, help="List every tracked record")
@click.pass_context
def status(
    ctx: Any, local: Optional[str], remote: Optional[str], show_all: bool
) -> None:
    """Show the sync state of LOCAL and REMOTE.

    Displays when the pair was last synced, how many files are tracked and
    which actions the next cycle would apply, deletions included. Nothing
    is transferred or deleted.
    """
    out: OutputFormatter = ctx.obj["out"]
    pair = _resolve_pair(ctx, out, local, remote)

    try:
        engine = SyncEngine.from_pair(pair, OutputFormatter(quiet=True))
        engine.run_cycle(dry_run=True)
        registry = engine.store.load()
    except SyncCycleError as e:
        out.error(str(e))
        ctx.exit(1)
        return
    except BucketSyncError as e:
        out.error(f"Failed to read sync state: {e}")
        ctx.exit(1)
        return

    pending = [action for action in engine.last_plan if action.requires_io]
    deletions = [
        action
        for action in pending
        if action.action in (SyncAction.DELETE_LOCAL, SyncAction.DELETE_REMOTE)
    ]

    if out.json_output:
        out.output_json(
            {
                "remote": engine.remote.describe(),
                "last_sync": registry.last_sync,
                "tracked": len(registry),
                "pending": [
                    {
                        "key": action.key,
                        "action": action.action.value,
                        "direction": action.direction,
                        "reason": action.reason,
                    }
                    for action in pending
                ],
                "pending_deletions": sorted(action.key for action in deletions),
                "files": registry.to_dict()["files"] if show_all else None,
            }
        )
        return

    out.print_summary(
        "Sync status",
        [
            ("Local", str(pair.local)),
            ("Remote", engine.remote.describe()),
            ("Last sync", registry.last_sync or "never"),
            ("Tracked files", str(len(registry))),
            ("Pending actions", str(len(pending))),
            ("Pending deletions", str(len(deletions))),
        ],
    )

    if pending:
        rows = [
            [action.key, action.action.value, action.direction, action.reason]
            for action in pending
        ]
        out.print_table(
            "Pending actions", ["Key", "Action", "Direction", "Reason"], rows
        )

    if show_all and len(registry):
        rows = []
        for key in sorted(registry):
            record = registry.get(key)
            assert record is not None
            rows.append(
                [
                    key,
                    "deleted" if record.local.deleted else format_size(record.local.size),
                    "deleted" if record.remote.deleted else format_size(record.remote.size),
                    record.local.content_hash[:12],
                ]
            )
        out.print_table("Tracked files", ["Key", "Local", "Remote", "Hash"], rows)


@main.command()
@click.argument("remote", type=str, required=False)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def reset(ctx: Any, remote: Optional[str], yes: bool) -> None:
    """Delete the sync registry stored in REMOTE.

    The next cycle starts from scratch: files present on both sides are
    compared by content, and deletions are no longer propagated until the
    registry has been rebuilt.
    """
    out: OutputFormatter = ctx.obj["out"]
    store = _remote_store(ctx, out, remote)

    if not yes and not click.confirm(
        f"Delete the sync registry in {store.replica.describe()}?", default=False
    ):
        out.info("Aborted")
        ctx.exit(1)

    try:
        cleared = store.clear()
    except BucketSyncError as e:
        out.error(f"Failed to delete registry: {e}")
        ctx.exit(1)
        return

    if cleared:
        out.success("✓ Sync registry deleted")
    else:
        out.info("No sync registry found")


if __name__ == "__main__":
    main()
