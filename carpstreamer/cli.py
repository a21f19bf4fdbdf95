"""CLI interface for carp-streamer."""

import logging
from pathlib import Path
from typing import Any, Optional

import click
from rich.markup import escape

from . import __version__
from .api import BoxClient
from .cache import PathCache
from .cli_progress import SyncProgressDisplay
from .config import config
from .exceptions import CarpAPIError, CarpNotFoundError
from .output import OutputFormatter
from .resolver import RemoteTreeResolver
from .sync import CacheSnapshotStore, SyncObserver, SyncOutcome, SyncResult, Synchronizer
from .utils import DEFAULT_CACHE_MAX_SIZE, DEFAULT_WORKERS

logger = logging.getLogger(__name__)

OUTCOME_STYLES = {
    SyncOutcome.FAILURE: "red",
    SyncOutcome.DENIED: "red",
    SyncOutcome.EXCLUDED: "dim",
    SyncOutcome.SYNCHRONIZED: "dim",
    SyncOutcome.UPLOADED: "green",
    SyncOutcome.UPGRADED: "cyan",
    SyncOutcome.CREATED: "blue",
}


def require_token(ctx: Any, out: OutputFormatter) -> str:
    """Return the access token from the command line, environment or config.

    Exits with status 1 if none is available.
    """
    token = ctx.obj.get("token") or config.access_token
    if not token:
        out.error(
            "No access token configured. "
            "Run 'carp-streamer init' or set CARP_ACCESS_TOKEN."
        )
        ctx.exit(1)
    return token


@click.group()
@click.option("--token", "-t", envvar="CARP_ACCESS_TOKEN", help="Box access token")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(version=__version__, prog_name="carp-streamer")
@click.pass_context
def main(
    ctx: Any,
    token: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """carp-streamer - Synchronize local directories to Box."""
    ctx.ensure_object(dict)
    ctx.obj["token"] = token
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("carpstreamer").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.option(
    "--token",
    "-t",
    prompt="Enter your Box access token",
    hide_input=True,
    help="Box access token",
)
@click.pass_context
def init(ctx: Any, token: str) -> None:
    """Initialize carp-streamer configuration.

    Stores your access token in ~/.config/carpstreamer/config for future use.
    """
    out: OutputFormatter = ctx.obj["out"]

    out.info("Validating access token...")
    client = BoxClient(access_token=token)
    try:
        user = client.get_current_user()
        out.success(f"✓ Access token is valid ({user.get('login', 'unknown user')})")
    except CarpAPIError as e:
        out.error(f"Access token validation failed: {e}")
        if not click.confirm("Save access token anyway?", default=False):
            out.warning("Configuration cancelled.")
            ctx.exit(1)
    finally:
        client.close()

    try:
        config.save_access_token(token)
    except OSError as e:
        out.error(f"Initialization failed: {e}")
        ctx.exit(1)

    out.print_summary(
        "Initialization Complete",
        [
            ("Status", "✓ Configuration saved successfully"),
            ("Config file", str(config.get_config_path())),
            ("Note", "You can now use carp-streamer without specifying --token"),
        ],
    )


@main.command()
@click.argument(
    "sources",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)
@click.argument("destination", type=str)
@click.option(
    "--dry-run",
    "--pretend",
    "pretend",
    is_flag=True,
    help="Show what would be synced without creating or uploading anything",
)
@click.option(
    "--workers",
    "-w",
    type=click.IntRange(1, 64),
    default=DEFAULT_WORKERS,
    show_default=True,
    help="Number of concurrent workers",
)
@click.option(
    "--exclude",
    "-e",
    multiple=True,
    help="Relative path prefix to skip (repeatable)",
)
@click.option(
    "--cache-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path cache snapshot file (default: ~/.config/carpstreamer/cache.json)",
)
@click.option(
    "--no-cache-file",
    is_flag=True,
    help="Neither load nor save a path cache snapshot",
)
@click.option(
    "--clear-cache",
    is_flag=True,
    help="Delete the path cache snapshot and start from an empty cache",
)
@click.option(
    "--cache-max-size",
    type=click.IntRange(min=1),
    default=DEFAULT_CACHE_MAX_SIZE,
    show_default=True,
    help="Maximum number of remote items kept in the path cache",
)
@click.option(
    "--cache-max-age",
    type=click.FloatRange(min=0),
    default=None,
    help="Maximum age of path cache entries in seconds (default: unlimited)",
)
@click.option(
    "--revalidate-cache",
    is_flag=True,
    help="Confirm cached remote items with a conditional request before use",
)
@click.option(
    "--no-progress",
    is_flag=True,
    help="Disable progress bar",
)
@click.pass_context
def sync(
    ctx: Any,
    sources: tuple[Path, ...],
    destination: str,
    pretend: bool,
    workers: int,
    exclude: tuple[str, ...],
    cache_file: Optional[Path],
    no_cache_file: bool,
    clear_cache: bool,
    cache_max_size: int,
    cache_max_age: Optional[float],
    revalidate_cache: bool,
    no_progress: bool,
) -> None:
    """Synchronize local directories into a Box folder.

    SOURCES: Local directories to synchronize

    DESTINATION: ID of the destination folder ("0" is the root folder)

    Examples:
        carp-streamer sync ./photos 0
        carp-streamer sync ./docs 12345 -e build -e .git --dry-run
        carp-streamer sync ./data 12345 --revalidate-cache -w 4
        carp-streamer sync ./data 12345 --clear-cache
    """
    out: OutputFormatter = ctx.obj["out"]
    token = require_token(ctx, out)

    cache = PathCache(max_size=cache_max_size, max_age=cache_max_age)
    store: Optional[CacheSnapshotStore] = None
    if not no_cache_file:
        store = CacheSnapshotStore(cache_file or config.get_cache_path())
        if not clear_cache:
            store.load_into(cache)
        elif store.clear():
            out.info(f"Cleared path cache snapshot {escape(str(store.path))}")

    client = BoxClient(access_token=token)
    results: list[SyncResult] = []
    error_message: Optional[str] = None
    interrupted = False

    try:
        resolver = RemoteTreeResolver.open(
            client, root_id=destination, cache=cache, revalidate=revalidate_cache
        )
        if not out.quiet:
            out.info(f"Destination: {escape(resolver.root.name)} ({resolver.root.id})")
            if pretend:
                out.info("Dry run: nothing will be created or uploaded")

        show_progress = not (no_progress or out.quiet or out.json_output)
        for source in sources:
            results.extend(
                _sync_source(
                    resolver, source, exclude, pretend, workers, out, show_progress
                )
            )
    except KeyboardInterrupt:
        interrupted = True
    except CarpNotFoundError:
        error_message = f"Destination folder not found: {destination}"
    except CarpAPIError as e:
        error_message = f"API error: {e}"
    finally:
        client.close()

    if interrupted:
        out.warning("Sync cancelled by user")
        ctx.exit(130)
    if error_message is not None:
        out.error(error_message)
        ctx.exit(1)

    if store is not None:
        try:
            store.save(cache)
        except OSError as e:
            out.warning(f"Failed to save path cache: {e}")

    summary = Synchronizer.summarize(results)
    if out.json_output:
        out.output_json(
            {
                "results": [result.to_dict() for result in results],
                "summary": {outcome.value: count for outcome, count in summary.items()},
                "dry_run": pretend,
            }
        )
    else:
        _display_summary(out, summary, results, pretend)

    if summary.get(SyncOutcome.FAILURE, 0) > 0:
        ctx.exit(1)


def _sync_source(
    resolver: RemoteTreeResolver,
    source: Path,
    exclude: tuple[str, ...],
    pretend: bool,
    workers: int,
    out: OutputFormatter,
    show_progress: bool,
) -> list[SyncResult]:
    """Synchronize one local directory, printing each result as it arrives."""
    results: list[SyncResult] = []
    logger.debug(f"Synchronizing source {source}")

    def handle(result: SyncResult) -> None:
        results.append(result)
        _print_result(out, result)

    if show_progress:
        with SyncProgressDisplay() as display:
            synchronizer = Synchronizer(
                resolver,
                source,
                exclude_prefixes=exclude,
                pretend=pretend,
                max_workers=workers,
                observer=display.create_observer(),
            )
            for result in synchronizer.sync_directory():
                handle(result)
    else:
        synchronizer = Synchronizer(
            resolver,
            source,
            exclude_prefixes=exclude,
            pretend=pretend,
            max_workers=workers,
            observer=SyncObserver(),
        )
        for result in synchronizer.sync_directory():
            handle(result)

    return results


def _print_result(out: OutputFormatter, result: SyncResult) -> None:
    path = escape(result.relative_path or ".")
    if result.failed:
        out.error(f"{path}: {escape(str(result.error))}")
        return
    style = OUTCOME_STYLES.get(result.outcome, "white")
    out.print(f"[{style}]{result.outcome.value}[/{style}]: {path}")


def _display_summary(
    out: OutputFormatter,
    summary: dict[SyncOutcome, int],
    results: list[SyncResult],
    pretend: bool,
) -> None:
    uploaded_bytes = sum(
        result.task.entry.stat.st_size
        for result in results
        if result.outcome in (SyncOutcome.UPLOADED, SyncOutcome.UPGRADED)
        and result.task.entry.stat is not None
    )
    items = [
        (outcome.value.capitalize(), str(summary[outcome]))
        for outcome in SyncOutcome
        if summary.get(outcome)
    ]
    if uploaded_bytes:
        items.append(("Transferred", out.format_size(uploaded_bytes)))
    if not items:
        items.append(("Status", "Nothing to synchronize"))

    out.print("")
    out.print_summary("Dry Run Complete" if pretend else "Sync Complete", items)
