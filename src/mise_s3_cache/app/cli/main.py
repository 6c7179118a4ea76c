"""CLI main entry point."""

import json
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn

import click
from botocore.exceptions import BotoCoreError

from ...adapters import (
    JsonStatsLedger,
    MiseProjectScope,
    MiseToolManager,
    PidFileLockAdapter,
    S3StorageAdapter,
    Sha256Adapter,
    StdLoggerAdapter,
    TarGzArchiveAdapter,
    UtcClockAdapter,
    create_metrics,
)
from ...client_operations import get_cache_usage
from ...core import CacheConfig, CacheError, CacheService, ConfigError, ValidationError


@dataclass
class CliState:
    """Options of the command group, shared by every subcommand."""

    config_path: Path | None = None
    verbose: bool = False


def create_service(
    config: CacheConfig,
    log_level: str = "INFO",
    project_dir: Path | None = None,
) -> CacheService:
    """Create service with wired adapters."""
    logger = StdLoggerAdapter(level=log_level, log_file=config.log_file)
    hasher = Sha256Adapter()
    clock = UtcClockAdapter()
    lock = PidFileLockAdapter(config.lock_dir)
    tool_manager = MiseToolManager()

    try:
        storage = S3StorageAdapter(
            config.bucket,
            endpoint_url=config.endpoint_url,
            region=config.region,
            profile=config.profile,
            timeout=config.network_timeout,
        )
    except BotoCoreError as e:
        raise ConfigError(f"Cannot create S3 client: {e}") from e

    return CacheService(
        config=config,
        storage=storage,
        archive=TarGzArchiveAdapter(hasher),
        hasher=hasher,
        lock=lock,
        stats=JsonStatsLedger(config.stats_path, lock, clock, logger),
        clock=clock,
        logger=logger,
        metrics=create_metrics(config.metrics_type, logger),
        scope=MiseProjectScope(project_dir, tool_manager),
        tool_manager=tool_manager,
    )


def _log_level(config: CacheConfig, verbose: bool, hook_mode: bool) -> str:
    if hook_mode:
        # Hooks run inside mise; keep them quiet
        return "WARNING" if verbose else "ERROR"
    if verbose or config.debug:
        return "DEBUG"
    return config.log_level


def _open_service(state: CliState, hook_mode: bool = False) -> CacheService | None:
    """Load config and build the service; None when configuration is broken."""
    try:
        config = CacheConfig.from_env(config_path=state.config_path)
        return create_service(config, _log_level(config, state.verbose, hook_mode))
    except ConfigError as e:
        if not hook_mode:
            click.echo(f"Error: {e}", err=True)
        return None


def _echo(message: str, hook_mode: bool = False) -> None:
    if not hook_mode:
        click.echo(message)


def _echo_json(data: dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _fail(message: str, hook_mode: bool = False, code: int = 1) -> NoReturn:
    if not hook_mode:
        click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def _require_tool_version(
    tool: str | None, version: str | None, hook_mode: bool = False, code: int = 1
) -> tuple[str, str]:
    if not tool or not version:
        if hook_mode:
            sys.exit(code)
        raise click.UsageError("TOOL and VERSION are required unless --all is given")
    return tool, version


def _warn_unavailable(service: CacheService, hook_mode: bool) -> None:
    if not service.available and not hook_mode:
        click.echo(f"Warning: S3 cache unavailable: {service.config.unavailable_reason}", err=True)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Read configuration from this file instead of the default locations",
)
@click.version_option(package_name="mise-s3-cache")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Path | None) -> None:
    """mise-s3-cache - S3-backed cache for mise tool installs."""
    ctx.obj = CliState(config_path=config_path, verbose=verbose)


@cli.command()
@click.argument("tool", required=False)
@click.argument("version", required=False)
@click.option("--all", "check_all", is_flag=True, help="Check every tool the project declares")
@click.option("--hook-mode", is_flag=True, help="Silent mode for mise hooks")
@click.pass_obj
def check(
    state: CliState, tool: str | None, version: str | None, check_all: bool, hook_mode: bool
) -> None:
    """Check whether a tool version is cached. Exits 0 when cached, 1 otherwise."""
    service = _open_service(state, hook_mode)
    if service is None:
        sys.exit(1)
    _warn_unavailable(service, hook_mode)

    if check_all:
        analysis = service.analyze()
        for ref in analysis.cached:
            _echo(f"cached   {ref}", hook_mode)
        for ref in analysis.missing:
            _echo(f"missing  {ref}", hook_mode)
        sys.exit(0 if not analysis.missing else 1)

    tool, version = _require_tool_version(tool, version, hook_mode)
    try:
        found = service.check(tool, version)
    except ValidationError as e:
        _fail(str(e), hook_mode)
    _echo(f"{tool}@{version} {'is cached' if found else 'is not cached'}", hook_mode)
    sys.exit(0 if found else 1)


@cli.command()
@click.argument("tool", required=False)
@click.argument("version", required=False)
@click.option(
    "-p", "--path", "dest", type=click.Path(path_type=Path), help="Install directory to populate"
)
@click.option("--all", "restore_all", is_flag=True, help="Restore every tool the project declares")
@click.option("--selective", is_flag=True, help="With --all, only attempt tools that are cached")
@click.option("--hook-mode", is_flag=True, help="Silent mode for mise hooks")
@click.pass_obj
def restore(
    state: CliState,
    tool: str | None,
    version: str | None,
    dest: Path | None,
    restore_all: bool,
    selective: bool,
    hook_mode: bool,
) -> None:
    """Restore a tool version from the cache. Exits 0 on hit, 1 on miss."""
    service = _open_service(state, hook_mode)
    if service is None:
        sys.exit(1)
    _warn_unavailable(service, hook_mode)

    if restore_all:
        results = service.restore_all(selective=selective)
        for result in results:
            _echo(f"{result.status.value:<20} {result.tool}@{result.version}", hook_mode)
        restored = sum(1 for result in results if result.ok)
        _echo(f"Restored {restored} of {len(results)} tools from cache", hook_mode)
        sys.exit(0)

    tool, version = _require_tool_version(tool, version, hook_mode)
    try:
        service.cache_key(tool, version)
        if dest is None and service.tool_manager is not None:
            dest = service.tool_manager.install_path(tool, version)
        if dest is None:
            _fail("No install path given", hook_mode)
        result = service.restore(tool, version, dest)
    except ValidationError as e:
        _fail(str(e), hook_mode)

    if result.ok:
        _echo(f"Restored {tool}@{version} to {dest}", hook_mode)
        sys.exit(0)
    if not hook_mode:
        click.echo(f"Cache {result.status.value}: {result.message}", err=True)
    sys.exit(1)


@cli.command()
@click.argument("tool", required=False)
@click.argument("version", required=False)
@click.option(
    "-p",
    "--path",
    "source",
    type=click.Path(path_type=Path),
    help="Install directory to upload",
)
@click.option("--all", "store_all", is_flag=True, help="Store every installed project tool")
@click.option("--hook-mode", is_flag=True, help="Silent mode for mise hooks")
@click.option("--ci-mode", is_flag=True, help="Exit non-zero when anything fails to store")
@click.pass_obj
def store(
    state: CliState,
    tool: str | None,
    version: str | None,
    source: Path | None,
    store_all: bool,
    hook_mode: bool,
    ci_mode: bool,
) -> None:
    """Upload a tool version to the cache. Never fails unless --ci-mode."""
    service = _open_service(state, hook_mode)
    if service is None:
        sys.exit(1 if ci_mode else 0)
    if not service.available:
        _warn_unavailable(service, hook_mode)
        sys.exit(1 if ci_mode else 0)

    if store_all:
        results = service.store_all()
    else:
        tool, version = _require_tool_version(
            tool, version, hook_mode, 1 if ci_mode else 0
        )
        try:
            service.cache_key(tool, version)
            if source is None and service.tool_manager is not None:
                source = service.tool_manager.install_path(tool, version)
            if source is None:
                _fail("No install path given", hook_mode, 1 if ci_mode else 0)
            results = [service.store(tool, version, source)]
        except ValidationError as e:
            _fail(str(e), hook_mode, 1 if ci_mode else 0)

    failed = [result for result in results if not result.ok]
    for result in results:
        line = f"{result.status.value:<14} {result.tool}@{result.version}"
        if result.message:
            line = f"{line}  {result.message}"
        _echo(line, hook_mode)
    sys.exit(1 if ci_mode and failed else 0)


@cli.command()
@click.option("-d", "--days", type=float, help="Maximum entry age in days (default: TTL)")
@click.option("--temp-only", is_flag=True, help="Only remove stale locks and local temp files")
@click.pass_obj
def cleanup(state: CliState, days: float | None, temp_only: bool) -> None:
    """Delete expired cache entries."""
    service = _open_service(state)
    if service is None:
        sys.exit(1)

    if temp_only:
        removed = service.cleanup_temp_files()
        _echo_json({"removed": [str(path) for path in removed]})
        return

    try:
        result = service.cleanup(days)
    except ValidationError as e:
        _fail(str(e))
    _echo_json(
        {
            "cutoff": result.cutoff.isoformat(),
            "objects_deleted": len(result.deleted_keys),
            "entries_removed": result.entries_removed,
            "errors": result.errors,
        }
    )
    if result.errors:
        sys.exit(1)


@cli.command()
@click.pass_obj
def stats(state: CliState) -> None:
    """Show local hit/miss statistics."""
    service = _open_service(state)
    if service is None:
        sys.exit(1)

    record = service.load_stats()
    _echo_json(
        {
            "cache_hits": record.cache_hits,
            "cache_misses": record.cache_misses,
            "total_downloads": record.total_downloads,
            "hit_rate": round(record.hit_rate, 3),
            "total_savings_bytes": record.total_savings_bytes,
            "total_uploads": record.total_uploads,
            "upload_failures": record.upload_failures,
            "tools": {
                tool: {version: vars(usage) for version, usage in versions.items()}
                for tool, versions in record.tools.items()
            },
        }
    )


@cli.command()
@click.option("-q", "--quiet", is_flag=True, help="No output; exit 0 when the cache is usable")
@click.pass_obj
def status(state: CliState, quiet: bool) -> None:
    """Show configuration and remote cache usage."""
    service = _open_service(state, hook_mode=quiet)
    if service is None:
        sys.exit(1)
    if quiet:
        sys.exit(0 if service.available else 1)

    config = service.config
    output: dict[str, Any] = {
        "enabled": config.enabled,
        "bucket": config.bucket,
        "region": config.region,
        "prefix": config.prefix,
        "ttl_seconds": config.ttl_seconds,
        "cache_dir": str(config.cache_dir),
        "available": service.available,
        "problems": config.problems(),
    }
    if service.tool_manager is not None:
        output["tool_manager_version"] = service.tool_manager.version()
    if service.available:
        usage = get_cache_usage(service)
        output["remote"] = {
            "objects": usage.object_count,
            "entries": usage.entry_count,
            "total_size": usage.total_size,
            "tools": usage.tools,
            "partial": usage.partial,
            "error": usage.error,
        }
    _echo_json(output)
    if not service.available:
        sys.exit(1)


@cli.command()
@click.pass_obj
def analyze(state: CliState) -> None:
    """Report which project tools are cached."""
    service = _open_service(state)
    if service is None:
        sys.exit(1)
    _warn_unavailable(service, hook_mode=False)

    analysis = service.analyze()
    _echo_json(
        {
            "total": analysis.total,
            "cached": [str(ref) for ref in analysis.cached],
            "missing": [str(ref) for ref in analysis.missing],
            "hit_rate": round(analysis.hit_rate, 3),
        }
    )


def _spawn_background_warm(state: CliState, parallel: int | None) -> int:
    """Start a detached foreground warm in a new session and return its pid."""
    args = [sys.executable, "-m", "mise_s3_cache.app.cli.main"]
    if state.verbose:
        args.append("-v")
    if state.config_path is not None:
        args += ["--config", str(state.config_path)]
    args += ["warm", "--hook-mode"]
    if parallel is not None:
        args += ["--parallel", str(parallel)]
    process = subprocess.Popen(
        args,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
    return process.pid


@cli.command()
@click.option("-p", "--parallel", type=click.IntRange(min=1), help="Concurrent installs")
@click.option("--background", is_flag=True, help="Warm in a detached process and return at once")
@click.option("--hook-mode", is_flag=True, help="Silent mode for mise hooks")
@click.option("--ci-mode", is_flag=True, help="Install one at a time and fail on any error")
@click.pass_obj
def warm(
    state: CliState, parallel: int | None, background: bool, hook_mode: bool, ci_mode: bool
) -> None:
    """Install and cache every project tool that is not cached yet.

    --ci-mode always runs in the foreground, even with --background.
    """
    service = _open_service(state, hook_mode)
    if service is None:
        sys.exit(1 if ci_mode else 0)
    if not service.available:
        _warn_unavailable(service, hook_mode)
        sys.exit(1 if ci_mode else 0)

    if background and not ci_mode:
        try:
            pid = _spawn_background_warm(state, parallel)
        except OSError as e:
            _fail(f"Cannot start background warm: {e}", hook_mode, 0)
        _echo(f"Cache warming started in background (pid {pid})", hook_mode)
        sys.exit(0)

    if parallel is None and ci_mode:
        parallel = 1
    try:
        result = service.warm(parallel)
    except CacheError as e:
        _fail(str(e), hook_mode, 1 if ci_mode else 0)

    if not hook_mode:
        _echo_json(
            {
                "already_cached": [str(ref) for ref in result.already_cached],
                "installed": [str(ref) for ref in result.installed],
                "failed": result.failed,
            }
        )
    sys.exit(1 if ci_mode and not result.ok else 0)


@cli.command("test")
@click.pass_obj
def connection_test(state: CliState) -> None:
    """Check that the bucket is readable and writable."""
    service = _open_service(state)
    if service is None:
        sys.exit(1)
    if not service.available:
        _fail(f"S3 cache unavailable: {service.config.unavailable_reason}")
    if not isinstance(service.storage, S3StorageAdapter):
        _fail("Connection test needs the S3 storage backend")

    probe = service.storage.probe(service.config.tools_prefix)
    _echo_json(
        {
            "bucket": service.config.bucket,
            "readable": probe.readable,
            "writable": probe.writable,
            "message": probe.message,
        }
    )
    if not probe.ok:
        sys.exit(1)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
