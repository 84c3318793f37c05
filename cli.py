#!/usr/bin/env python3
"""
Event Core CLI.

Primary entry point for all event system operations.
Use --service to select what to run, --action to control lifecycle.

Usage:
    python cli.py --help
    python cli.py --service server --verbose
    python cli.py --service server --action stop
    python cli.py --service event-worker --verbose
    python cli.py --service reprocess --limit 20
    python cli.py --service stats
    python cli.py --service test --test-type unit
"""

import asyncio
import json
import os
import signal
import subprocess
import sys
from pathlib import Path

import click
import structlog

PROJECT_ROOT = Path(__file__).parent

from modules.eventcore.core.logging import get_logger, setup_logging

LONG_RUNNING_SERVICES = {"server"}

EVENT_APP_FACTORY = "modules.eventcore.events.broker:create_event_app"


def validate_project_root() -> Path:
    """Validate that we're running from the project root."""
    if not (PROJECT_ROOT / ".project_root").exists():
        click.echo(
            click.style("Error: .project_root not found. Run from project root.", fg="red"),
            err=True,
        )
        sys.exit(1)
    return PROJECT_ROOT


def _find_process_on_port(port: int) -> list[int]:
    """Find PIDs listening on a port."""
    result = subprocess.run(
        ["lsof", "-ti", f":{port}"],
        capture_output=True, text=True,
    )
    pids = result.stdout.strip().split("\n")
    return [int(p) for p in pids if p.strip()]


def _service_stop(logger, service: str, port: int) -> None:
    """Stop a running service by finding its process on the port."""
    pids = _find_process_on_port(port)
    if not pids:
        click.echo(f"No {service} running on port {port}.")
        return

    for pid in pids:
        os.kill(pid, signal.SIGINT)
        logger.info("Sent SIGINT", extra={"service": service, "pid": pid, "port": port})

    click.echo(f"{service.title()} on port {port} stopped (PID: {', '.join(str(p) for p in pids)}).")


def _service_status(logger, service: str, port: int) -> None:
    """Check if a service is running on a port."""
    pids = _find_process_on_port(port)
    if pids:
        click.echo(f"{service.title()} is running on port {port} (PID: {', '.join(str(p) for p in pids)}).")
    else:
        click.echo(f"{service.title()} is not running on port {port}.")


def _get_service_port(port: int | None) -> int:
    """Get the port from argument or config."""
    if port is not None:
        return port
    from modules.eventcore.core.config import get_app_config
    return get_app_config().application.server.port


def _run_subprocess(logger, cmd: list[str], label: str) -> None:
    """Run a long-running child process until it exits or Ctrl+C."""
    try:
        subprocess.run(cmd, check=True, cwd=PROJECT_ROOT)
    except KeyboardInterrupt:
        logger.info(f"{label} stopped")
    except subprocess.CalledProcessError as e:
        logger.error(f"{label} failed to start", extra={"exit_code": e.returncode})
        sys.exit(e.returncode)


def _require_redis(logger) -> None:
    try:
        from modules.eventcore.core.config import get_redis_url
        redis_url = get_redis_url()
        logger.debug("Redis configured", extra={"redis_url": redis_url.split("@")[-1]})
    except Exception as e:
        logger.error("Failed to load Redis configuration.", extra={"error": str(e)})
        click.echo(
            click.style(f"Error: Redis not configured: {e}", fg="red"),
            err=True,
        )
        sys.exit(1)


@click.command()
@click.option(
    "--service", "-s",
    type=click.Choice([
        "server", "event-worker", "task-worker", "scheduler", "reprocess", "recover", "stats",
        "health", "config", "test", "info", "migrate",
    ]),
    default="info",
    help="Service or command to run.",
)
@click.option(
    "--action", "-a",
    type=click.Choice(["start", "stop", "restart", "status"]),
    default="start",
    help="Lifecycle action for the API server.",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Enable verbose output (INFO level logging).",
)
@click.option(
    "--debug", "-d",
    is_flag=True,
    help="Enable debug output (DEBUG level logging).",
)
@click.option(
    "--host",
    default=None,
    help="Server host.",
)
@click.option(
    "--port",
    default=None,
    type=int,
    help="Server port.",
)
@click.option(
    "--reload",
    is_flag=True,
    help="Enable auto-reload (server only).",
)
@click.option(
    "--limit",
    default=None,
    type=click.IntRange(min=1),
    help="Maximum dead letters to reprocess (reprocess only).",
)
@click.option(
    "--test-type",
    type=click.Choice(["all", "unit", "integration"]),
    default="all",
    help="Test type to run.",
)
@click.option(
    "--coverage",
    is_flag=True,
    help="Run tests with coverage.",
)
@click.option(
    "--migrate-action",
    type=click.Choice(["upgrade", "downgrade", "current", "history", "autogenerate"]),
    default="current",
    help="Migration action.",
)
@click.option(
    "--revision",
    default="head",
    help="Target revision for upgrade/downgrade.",
)
@click.option(
    "-m", "--message",
    default=None,
    help="Migration message (for autogenerate).",
)
@click.option(
    "--workers",
    default=1,
    type=int,
    help="Number of worker processes.",
)
def main(
    service: str,
    action: str,
    verbose: bool,
    debug: bool,
    host: str | None,
    port: int | None,
    reload: bool,
    limit: int | None,
    test_type: str,
    coverage: bool,
    migrate_action: str,
    revision: str,
    message: str | None,
    workers: int,
) -> None:
    """
    Event Core CLI.

    Use --service to select what to run. For the API server,
    use --action to control lifecycle (start/stop/restart/status).

    \b
    Examples:
        python cli.py --service server --verbose
        python cli.py --service server --action restart --port 8099
        python cli.py --service event-worker --verbose
        python cli.py --service task-worker --workers 2
        python cli.py --service scheduler
        python cli.py --service reprocess --limit 20
        python cli.py --service recover
        python cli.py --service stats
        python cli.py --service health --debug
        python cli.py --service migrate --migrate-action upgrade
    """
    validate_project_root()

    if debug:
        log_level = "DEBUG"
    elif verbose:
        log_level = "INFO"
    else:
        log_level = "WARNING"

    setup_logging(level=log_level, format_type="console")

    structlog.contextvars.bind_contextvars(source="cli")

    logger = get_logger(__name__)

    logger.debug("CLI invoked", extra={"service": service, "action": action, "log_level": log_level})

    if service in LONG_RUNNING_SERVICES and action != "start":
        service_port = _get_service_port(port)

        if action == "stop":
            _service_stop(logger, service, service_port)
            return
        elif action == "status":
            _service_status(logger, service, service_port)
            return
        elif action == "restart":
            _service_stop(logger, service, service_port)
            import time
            time.sleep(2)

    if service == "server":
        run_server(logger, host, port, reload)
    elif service == "event-worker":
        run_event_worker(logger, workers)
    elif service == "task-worker":
        run_task_worker(logger, workers)
    elif service == "scheduler":
        run_scheduler(logger)
    elif service == "reprocess":
        asyncio.run(reprocess_dead_letters(logger, limit))
    elif service == "recover":
        asyncio.run(recover_pending(logger))
    elif service == "stats":
        asyncio.run(show_stats(logger))
    elif service == "health":
        check_health(logger)
    elif service == "config":
        show_config(logger)
    elif service == "test":
        run_tests(logger, test_type, coverage)
    elif service == "info":
        show_info(logger)
    elif service == "migrate":
        run_migrations(logger, migrate_action, revision, message)


def run_server(logger, host: str | None, port: int | None, reload: bool) -> None:
    """Start the FastAPI monitoring server."""
    from modules.eventcore.core.config import get_app_config

    try:
        server_config = get_app_config().application.server
    except Exception as e:
        logger.error("Failed to load configuration.", extra={"error": str(e)})
        click.echo(
            click.style("Error: Could not load config/settings/application.yaml.", fg="red"),
            err=True,
        )
        sys.exit(1)

    server_host = host or server_config.host
    server_port = port or server_config.port

    logger.info(
        "Starting server",
        extra={"host": server_host, "port": server_port, "reload": reload},
    )

    cmd = [
        sys.executable, "-m", "uvicorn",
        "modules.eventcore.main:app",
        "--host", server_host,
        "--port", str(server_port),
    ]

    if reload:
        cmd.append("--reload")

    click.echo(f"Starting server at http://{server_host}:{server_port}")
    click.echo("Press Ctrl+C to stop\n")

    _run_subprocess(logger, cmd, "Server")


def run_event_worker(logger, workers: int) -> None:
    """Start the FastStream event consumer."""
    _require_redis(logger)
    logger.info("Starting event worker", extra={"workers": workers})

    cmd = [
        sys.executable, "-m", "faststream",
        "run", "--factory", EVENT_APP_FACTORY,
        "--workers", str(workers),
    ]

    click.echo(f"Starting event worker with {workers} worker(s)")
    click.echo("Press Ctrl+C to stop\n")

    _run_subprocess(logger, cmd, "Event worker")


def run_task_worker(logger, workers: int) -> None:
    """Start the Taskiq worker for event maintenance tasks."""
    _require_redis(logger)
    logger.info("Starting background task worker", extra={"workers": workers})

    cmd = [
        sys.executable, "-m", "taskiq",
        "worker",
        "modules.eventcore.tasks.broker:broker",
        "--workers", str(workers),
    ]

    click.echo(f"Starting Taskiq worker with {workers} worker(s)")
    click.echo("Press Ctrl+C to stop\n")

    _run_subprocess(logger, cmd, "Worker")


def run_scheduler(logger) -> None:
    """Start the Taskiq scheduler for the cron-based maintenance tasks."""
    _require_redis(logger)
    logger.info("Starting task scheduler")

    from modules.eventcore.tasks.scheduled import SCHEDULED_TASKS

    click.echo("Scheduled tasks:")
    for task_name, config in SCHEDULED_TASKS.items():
        schedule = config["schedule"][0].get("cron", "N/A")
        click.echo(f"  - {task_name}: {schedule}")
    click.echo()

    cmd = [
        sys.executable, "-m", "taskiq",
        "scheduler",
        "modules.eventcore.tasks.scheduler:scheduler",
    ]

    click.echo("Starting Taskiq scheduler")
    click.echo("WARNING: Run only ONE scheduler instance to avoid duplicate task execution")
    click.echo("Press Ctrl+C to stop\n")

    _run_subprocess(logger, cmd, "Scheduler")


async def _with_services(work):
    """Build event services, run one operation against them, release connections."""
    from modules.eventcore.core.database import dispose_engine
    from modules.eventcore.services.factory import build_event_services

    services = build_event_services()
    await services.broker_client.connect()
    try:
        return await work(services)
    finally:
        await services.broker_client.close()
        await dispose_engine()


async def reprocess_dead_letters(logger, limit: int | None) -> None:
    """Move dead letters back onto the event queue with a small retry budget."""
    async def work(services):
        return await services.dead_letters.reprocess(limit)

    try:
        count = await _with_services(work)
    except Exception as e:
        logger.error("Dead letter reprocessing failed", extra={"error": str(e)})
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo(f"Reprocessed {count} dead letter event(s).")


async def recover_pending(logger) -> None:
    """Re-enqueue orphaned pending events once, outside of worker startup."""
    async def work(services):
        return await services.recovery.recover_pending()

    try:
        report = await _with_services(work)
    except Exception as e:
        logger.error("Recovery failed", extra={"error": str(e)})
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo(json.dumps(report.to_dict(), indent=2))


async def show_stats(logger) -> None:
    """Print event counts and health as JSON."""
    async def work(services):
        stats = await services.monitor.stats()
        health = await services.monitor.health()
        return {"stats": stats.model_dump(), "health": health.model_dump()}

    try:
        result = await _with_services(work)
    except Exception as e:
        logger.error("Failed to collect event stats", extra={"error": str(e)})
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo(json.dumps(result, indent=2, default=str))


def check_health(logger) -> None:
    """Check application health by testing imports and configuration."""
    click.echo("Checking application health...\n")

    checks = []

    try:
        from modules.eventcore.core.config import get_app_config
        app_config = get_app_config()
        checks.append(("YAML configuration", True, f"App: {app_config.application.name}"))
        logger.debug("Configuration loaded", extra={"app_name": app_config.application.name})
    except Exception as e:
        checks.append(("YAML configuration", False, str(e)))
        logger.error("Configuration failed", extra={"error": str(e)})

    try:
        from modules.eventcore.core.config import get_database_url
        url = get_database_url()
        checks.append(("Environment settings", True, url.split("@")[-1]))
    except Exception as e:
        checks.append(("Environment settings", False, str(e)))
        logger.warning("Environment settings not configured", extra={"error": str(e)})

    try:
        from modules.eventcore.events.handlers import HandlerRegistry
        from modules.eventcore.events.consumers.defaults import register_default_handlers
        registry = HandlerRegistry()
        register_default_handlers(registry)
        missing = registry.missing()
        detail = f"{len(missing)} event type(s) without handler" if missing else "all types handled"
        checks.append(("Event handlers", True, detail))
    except Exception as e:
        checks.append(("Event handlers", False, str(e)))
        logger.error("Handler registration failed", extra={"error": str(e)})

    try:
        from modules.eventcore.main import get_app
        app = get_app()
        checks.append(("FastAPI application", True, f"Title: {app.title}"))
        logger.debug("FastAPI app loaded", extra={"title": app.title})
    except Exception as e:
        checks.append(("FastAPI application", False, str(e)))
        logger.error("FastAPI app failed", extra={"error": str(e)})

    click.echo("Health Check Results:")
    click.echo("-" * 50)

    all_passed = True
    for name, passed, detail in checks:
        status = click.style("✓ PASS", fg="green") if passed else click.style("✗ FAIL", fg="red")
        detail_str = f" ({detail})" if detail else ""
        click.echo(f"  {status}  {name}{detail_str}")
        if not passed:
            all_passed = False

    click.echo("-" * 50)

    if all_passed:
        click.echo(click.style("\nAll checks passed!", fg="green"))
    else:
        click.echo(click.style("\nSome checks failed. See details above.", fg="yellow"))
        click.echo("Note: Environment settings require config/.env to be configured.")
        sys.exit(1)


def show_config(logger) -> None:
    """Display loaded configuration."""
    click.echo("Application Configuration:\n")

    try:
        from modules.eventcore.core.config import get_app_config

        app_config = get_app_config()
        sections = {
            "Application": app_config.application,
            "Database": app_config.database,
            "Logging": app_config.logging,
            "Feature Flags": app_config.features,
            "Observability": app_config.observability,
            "Events": app_config.events,
        }

        for title, section in sections.items():
            click.echo(f"{title} Settings (from YAML):")
            click.echo("-" * 40)
            for key, value in section.model_dump().items():
                if isinstance(value, dict):
                    click.echo(f"  {key}:")
                    for k, v in value.items():
                        click.echo(f"    {k}: {v}")
                else:
                    click.echo(f"  {key}: {value}")
            click.echo()

        logger.info("Configuration displayed successfully")

    except Exception as e:
        logger.error("Failed to load configuration", extra={"error": str(e)})
        click.echo(click.style(f"Error loading configuration: {e}", fg="red"))
        sys.exit(1)


def run_tests(logger, test_type: str, coverage: bool) -> None:
    """Run the test suite."""
    logger.info("Running tests", extra={"type": test_type, "coverage": coverage})

    cmd = [sys.executable, "-m", "pytest"]

    if test_type == "unit":
        cmd.append("tests/unit")
    elif test_type == "integration":
        cmd.append("tests/integration")
    else:
        cmd.append("tests/")

    cmd.append("-v")

    if coverage:
        cmd.extend(["--cov=modules/eventcore", "--cov-report=term-missing"])

    click.echo(f"Running: {' '.join(cmd)}\n")

    try:
        result = subprocess.run(cmd, cwd=PROJECT_ROOT)
        sys.exit(result.returncode)
    except FileNotFoundError:
        logger.error("pytest not found. Install with: pip install -e '.[test]'")
        sys.exit(1)


def run_migrations(
    logger,
    migrate_action: str,
    revision: str,
    message: str | None,
) -> None:
    """Run database migrations using Alembic."""
    logger.info(
        "Running migrations",
        extra={"action": migrate_action, "revision": revision},
    )

    alembic_ini = PROJECT_ROOT / "alembic.ini"

    if not alembic_ini.exists():
        click.echo(click.style("Error: alembic.ini not found.", fg="red"), err=True)
        sys.exit(1)

    cmd = [sys.executable, "-m", "alembic", "-c", str(alembic_ini)]

    if migrate_action == "upgrade":
        cmd.extend(["upgrade", revision])
        click.echo(f"Upgrading database to revision: {revision}")
    elif migrate_action == "downgrade":
        cmd.extend(["downgrade", revision])
        click.echo(f"Downgrading database to revision: {revision}")
    elif migrate_action == "current":
        cmd.append("current")
        click.echo("Showing current database revision...")
    elif migrate_action == "history":
        cmd.extend(["history", "--verbose"])
        click.echo("Showing migration history...")
    elif migrate_action == "autogenerate":
        if not message:
            click.echo(
                click.style("Error: --message/-m required for autogenerate.", fg="red"),
                err=True,
            )
            sys.exit(1)
        cmd.extend(["revision", "--autogenerate", "-m", message])
        click.echo(f"Generating migration: {message}")

    click.echo()

    try:
        result = subprocess.run(cmd, cwd=PROJECT_ROOT)
        if result.returncode != 0:
            logger.error("Migration failed", extra={"exit_code": result.returncode})
            sys.exit(result.returncode)
        logger.info("Migration completed successfully")
    except FileNotFoundError:
        logger.error("alembic not found. Install with: pip install alembic")
        sys.exit(1)


def show_info(logger) -> None:
    """Display application information."""
    click.echo("Event Core")
    click.echo("=" * 40)

    try:
        from modules.eventcore.core.config import get_app_config
        application = get_app_config().application
        click.echo(f"Name: {application.name}")
        click.echo(f"Version: {application.version}")
        click.echo(f"Description: {application.description}")
    except Exception as e:
        logger.error(
            "Failed to load application configuration",
            extra={"error": str(e)},
        )
        click.echo(
            click.style("Error: Could not load application.yaml configuration.", fg="red"),
            err=True,
        )
        sys.exit(1)

    click.echo()
    click.echo("Services (--service):")
    click.echo("  server         FastAPI monitoring API")
    click.echo("  event-worker   FastStream event consumer")
    click.echo("  task-worker    Taskiq maintenance task worker")
    click.echo("  scheduler      Taskiq scheduler (retry sweep, purge, stats)")
    click.echo("  reprocess      Re-enqueue dead letters (--limit)")
    click.echo("  recover        Re-enqueue orphaned pending events")
    click.echo("  stats          Print event counts and health")
    click.echo("  health         Check application health")
    click.echo("  config         Display configuration")
    click.echo("  test           Run test suite")
    click.echo("  migrate        Database migrations")
    click.echo("  info           Show this information")
    click.echo()
    click.echo("Lifecycle actions (--action, server only):")
    click.echo("  start          Start the service (default)")
    click.echo("  stop           Stop a running service")
    click.echo("  restart        Stop then start")
    click.echo("  status         Check if running")
    click.echo()
    click.echo("Examples:")
    click.echo("  python cli.py --service server --reload --verbose")
    click.echo("  python cli.py --service event-worker --verbose")
    click.echo("  python cli.py --service reprocess --limit 20")
    click.echo("  python cli.py --service migrate --migrate-action upgrade")

    logger.debug("Info displayed")


if __name__ == "__main__":
    main()
