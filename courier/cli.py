"""
Courier CLI - Command line interface for the delivery engine.

Usage:
    courier --help                  Show all commands
    courier tick                    Run a digest tick now
    courier sweep                   Run a grace-period sweep now
    courier work                    Run a worker pool until interrupted
    courier reap                    Return jobs of dead workers to the queue
    courier send-test USER_ID       Queue a test digest for a user
    courier status                  Show queue depth and worker health
"""

import asyncio
import uuid

import typer

app = typer.Typer(
    name="courier",
    help="Courier CLI - scheduled delivery and grace-period engine",
    no_args_is_help=True,
)


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_warning(message: str) -> None:
    """Print a warning message."""
    typer.echo(f"  ⚠️ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.command()
def tick():
    """Run a digest tick (scan, claim, enqueue)."""
    from courier.jobs.digest_tick import main

    result = asyncio.run(main())
    if result.skipped:
        _print_warning("Tick skipped: another tick is still running")
        return
    _print_success(
        f"{result.enqueued} enqueued, {result.deduplicated} already claimed, "
        f"{result.rejected} rejected, "
        f"{result.eligible} eligible"
    )


@app.command()
def sweep():
    """Suspend accounts whose grace period has ended."""
    from courier.jobs.grace_sweep import main

    result = asyncio.run(main(trigger="manual"))
    _print_success(f"{result.suspended} suspended of {result.examined} examined")
    for error in result.errors:
        _print_error(f"{error['user_id']}: {error['error']}")
    if result.errors:
        raise typer.Exit(1)


@app.command()
def work(
    size: int | None = typer.Option(None, "--size", "-s", help="Worker count (default WORKER_POOL_SIZE)"),
):
    """Run queue workers until interrupted."""
    from courier.jobs.worker import main

    asyncio.run(main(size=size))


@app.command()
def reap():
    """Return processing jobs of stale or stopped workers to pending."""
    from courier.core.logging import setup_logging
    from courier.services.digest_scheduler import get_digest_scheduler

    setup_logging()
    reclaimed = asyncio.run(get_digest_scheduler().reap_stale())
    _print_success(f"{reclaimed} job(s) reclaimed")


@app.command("send-test")
def send_test(user_id: str = typer.Argument(..., help="User ID to send a test digest to")):
    """Queue a test digest for a user (subject to the test-send cooldown)."""
    from courier.core.exceptions import CooldownActive, UserNotFound
    from courier.core.logging import setup_logging
    from courier.services.digest_scheduler import get_digest_scheduler

    setup_logging()
    try:
        target = uuid.UUID(user_id)
    except ValueError:
        _print_error(f"Not a valid user id: {user_id}")
        raise typer.Exit(2) from None

    try:
        job = asyncio.run(get_digest_scheduler().send_test_digest(target))
    except UserNotFound as e:
        _print_error(str(e))
        raise typer.Exit(1) from None
    except CooldownActive as e:
        _print_error(f"Cooldown active until {e.retry_at.isoformat()}")
        raise typer.Exit(1) from None

    _print_success(f"Test digest queued as job {job.id}")


@app.command()
def status():
    """Show queue depth, worker count, and the last sweep and batch."""
    from courier.config import get_settings
    from courier.core.database import AsyncSessionLocal
    from courier.core.datetime_utils import utc_now
    from courier.services.status import get_status

    async def _status():
        async with AsyncSessionLocal() as db:
            return await get_status(db, utc_now(), get_settings().heartbeat_timeout_seconds)

    snapshot = asyncio.run(_status())
    queue = snapshot.queue
    typer.echo(f"Status: {snapshot.status}")
    typer.echo(
        f"Queue: {queue.pending} pending, {queue.processing} processing, "
        f"{queue.retrying} retrying, {queue.completed} completed, {queue.failed} failed"
    )
    typer.echo(f"Active workers: {snapshot.active_workers}")
    if snapshot.last_sweep:
        sweep_run = snapshot.last_sweep
        typer.echo(
            f"Last sweep: {sweep_run.started_at:%Y-%m-%d %H:%M} UTC, "
            f"{sweep_run.suspended} suspended, {len(sweep_run.errors)} errors"
        )
    if snapshot.last_batch:
        batch = snapshot.last_batch
        typer.echo(
            f"Last batch: {batch.tick_time:%Y-%m-%d %H:%M} UTC, {batch.total_jobs} jobs "
            f"({batch.completed_jobs} completed, {batch.failed_jobs} failed)"
        )


if __name__ == "__main__":
    app()
