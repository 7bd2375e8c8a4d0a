# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapkeep FastAPI Integration - Plugin for FastAPI applications.

For applications that keep their SQLite database in a volatile cache and
want the process itself to own the snapshot lifecycle:
- Restore-if-needed on startup, before requests are served
- Daily scheduled backup (APScheduler) with jitter
- One bounded backup on shutdown
- Protected admin endpoints
"""

import asyncio
import os
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, UTC

import aiosqlite
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from snapkeep.backup.manager import latest_snapshot, list_snapshots
from snapkeep.config import SnapkeepConfig
from snapkeep.core import (
    KeeperState,
    get_metrics,
    initialize_state,
    run_backup_cycle,
    run_prune_cycle,
    run_restore_cycle,
    shutdown_state,
)
from snapkeep.errors import explain_missing_admin_key_env
from snapkeep.vault.journal import list_operations

logger = structlog.get_logger()

# Security
security = HTTPBearer(auto_error=False)

SCHEDULED_JOB_ID = "snapkeep_daily_backup"


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the SNAPKEEP_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("SNAPKEEP_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail=explain_missing_admin_key_env(),
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if not secrets.compare_digest(credentials.credentials, api_key):
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def register_snapkeep_routes(
    app: FastAPI,
    config: SnapkeepConfig,
    state: KeeperState,
    prefix: str = "/admin/snapkeep",
) -> None:
    """
    Register snapkeep admin endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        config: Snapkeep configuration
        state: Runtime state
        prefix: URL prefix for endpoints (default: /admin/snapkeep)
    """

    @app.post(f"{prefix}/backup", dependencies=[Depends(verify_api_key)])
    async def trigger_backup() -> dict:
        """
        Take a snapshot now.

        Returns the backup result including pruned snapshots.
        """
        result = await run_backup_cycle(config, state)
        return result.to_dict()

    @app.post(f"{prefix}/restore", dependencies=[Depends(verify_api_key)])
    async def trigger_restore() -> dict:
        """
        Restore the live database if it is missing.

        A present live database is never overwritten.
        """
        result = await run_restore_cycle(config, state)
        return result.to_dict()

    @app.post(f"{prefix}/prune", dependencies=[Depends(verify_api_key)])
    async def trigger_prune(dry_run: bool = True) -> dict:
        """
        Apply retention to the snapshot archive.

        Args:
            dry_run: If true, only report what would be deleted
        """
        summary = await run_prune_cycle(config, state, dry_run=dry_run)
        return summary.to_dict()

    @app.get(f"{prefix}/snapshots", dependencies=[Depends(verify_api_key)])
    async def get_snapshots() -> list:
        """List snapshots, newest first."""
        return [s.to_dict() for s in reversed(list_snapshots(config))]

    @app.get(f"{prefix}/status", dependencies=[Depends(verify_api_key)])
    async def get_status() -> dict:
        """
        Get current snapkeep status.

        Returns last run times, counters and the newest snapshot.
        """
        newest = latest_snapshot(config)
        last_backup = state["last_backup"]
        last_restore = state["last_restore"]
        return {
            "db_name": config.db_name,
            "live_database_present": config.live_db_path.exists(),
            "newest_snapshot": newest.name if newest else None,
            "last_backup_at": (
                state["last_backup_at"].isoformat() if state["last_backup_at"] else None
            ),
            "last_restore_at": (
                state["last_restore_at"].isoformat() if state["last_restore_at"] else None
            ),
            "total_backups": state["total_backups"],
            "total_restores": state["total_restores"],
            "total_failures": state["total_failures"],
            "last_backup": last_backup.to_dict() if last_backup else None,
            "last_restore": last_restore.to_dict() if last_restore else None,
            "schedule_time": config.schedule_time,
            "retention_days": config.retention_days,
        }

    @app.get(f"{prefix}/metrics", dependencies=[Depends(verify_api_key)])
    async def get_keeper_metrics() -> dict:
        """
        Get detailed snapshot metrics.

        Returns metrics including archive size and journal counters.
        """
        metrics = await get_metrics(config, state)
        return {
            "total_backups": metrics.total_backups,
            "total_restores": metrics.total_restores,
            "total_failures": metrics.total_failures,
            "last_backup_at": (
                metrics.last_backup_at.isoformat() if metrics.last_backup_at else None
            ),
            "last_restore_at": (
                metrics.last_restore_at.isoformat() if metrics.last_restore_at else None
            ),
            "snapshot_count": metrics.snapshot_count,
            "archive_size_bytes": metrics.archive_size_bytes,
            "archive_size_mb": round(metrics.archive_size_bytes / (1024 * 1024), 2),
            "newest_snapshot": metrics.newest_snapshot,
            "last_error": metrics.last_error,
            "journal": metrics.journal,
        }

    @app.get(f"{prefix}/operations", dependencies=[Depends(verify_api_key)])
    async def list_keeper_operations(
        limit: int = 50,
        offset: int = 0,
        kind: str | None = None,
    ) -> list:
        """
        List journaled operations with pagination.

        Args:
            limit: Maximum number of operations to return
            offset: Number of operations to skip
            kind: Filter by kind (backup, restore, prune)
        """
        db_path = state["journal_db_path"]
        if db_path is None or not db_path.exists():
            return []
        async with aiosqlite.connect(db_path) as journal_db:
            return await list_operations(journal_db, limit, offset, kind)

    @app.get(f"{prefix}/health", dependencies=[Depends(verify_api_key)])
    async def health_check() -> dict:
        """
        Health check endpoint.

        Verifies the live database and the snapshot archive.
        """
        live_ok = config.live_db_path.exists()
        archive_ok = config.backup_dir.is_dir() and os.access(config.backup_dir, os.W_OK)

        newest = latest_snapshot(config)
        newest_age_hours = None
        if newest:
            newest_age_hours = round(
                (datetime.now(UTC) - newest.timestamp).total_seconds() / 3600, 2
            )

        status = "healthy"
        if not live_ok or not archive_ok:
            status = "degraded"
        if not live_ok and not archive_ok:
            status = "unhealthy"

        return {
            "status": status,
            "live_database_present": live_ok,
            "archive_writable": archive_ok,
            "newest_snapshot": newest.name if newest else None,
            "newest_snapshot_age_hours": newest_age_hours,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @app.get(f"{prefix}/config", dependencies=[Depends(verify_api_key)])
    async def get_config() -> dict:
        """
        Get current configuration.
        """
        return {
            "db_name": config.db_name,
            "cache_dir": str(config.cache_dir),
            "backup_dir": str(config.backup_dir),
            "retention_days": config.retention_days,
            "retention_keep_minimum": config.retention_keep_minimum,
            "min_free_bytes": config.min_free_bytes,
            "busy_wait_seconds": config.busy_wait_seconds,
            "compression": config.compression.value,
            "compression_level": config.compression_level,
            "file_mode": f"{config.file_mode:04o}",
            "verify_snapshots": config.verify_snapshots,
            "journal_enabled": config.journal_enabled,
            "schedule_time": config.schedule_time,
            "randomized_delay_seconds": config.randomized_delay_seconds,
            "shutdown_timeout_seconds": config.shutdown_timeout_seconds,
        }


async def _startup(app: FastAPI, config: SnapkeepConfig, prefix: str) -> KeeperState:
    state = await initialize_state(config)
    app.state.snapkeep_state = state

    register_snapkeep_routes(app, config, state, prefix)

    # Before the application opens its database
    await run_restore_cycle(config, state)

    if config.schedule_time:
        app.state.snapkeep_scheduler = _setup_scheduled_task(config, state)

    return state


async def _shutdown(app: FastAPI, config: SnapkeepConfig, state: KeeperState) -> None:
    scheduler = getattr(app.state, "snapkeep_scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        app.state.snapkeep_scheduler = None

    try:
        await asyncio.wait_for(
            run_backup_cycle(config, state),
            timeout=config.shutdown_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error(
            "shutdown_backup_timed_out",
            timeout_seconds=config.shutdown_timeout_seconds,
        )

    await shutdown_state(state)


def setup_snapkeep_plugin(
    app: FastAPI,
    config: SnapkeepConfig,
    prefix: str = "/admin/snapkeep",
) -> None:
    """
    Set up snapkeep plugin with lifecycle management.

    This is the main entry point for integrating snapkeep with a FastAPI
    app. It sets up:
    - Restore on startup
    - Admin endpoints
    - The daily backup schedule if configured
    - A shutdown backup

    Args:
        app: FastAPI application
        config: Snapkeep configuration
        prefix: URL prefix for admin endpoints
    """
    # Store state in app.state for access across requests
    app.state.snapkeep_config = config
    app.state.snapkeep_state = None
    app.state.snapkeep_scheduler = None

    @app.on_event("startup")
    async def startup():
        """Restore and schedule on app startup."""
        logger.info("snapkeep_plugin_starting", db_name=config.db_name)
        await _startup(app, config, prefix)
        logger.info("snapkeep_plugin_started")

    @app.on_event("shutdown")
    async def shutdown():
        """Take a final snapshot on app shutdown."""
        logger.info("snapkeep_plugin_stopping")

        state = app.state.snapkeep_state
        if state:
            await _shutdown(app, config, state)

        logger.info("snapkeep_plugin_stopped")


def _setup_scheduled_task(config: SnapkeepConfig, state: KeeperState) -> AsyncIOScheduler:
    """Set up APScheduler for the daily backup."""
    scheduler = AsyncIOScheduler()

    # Parse HH:MM format
    hour, minute = map(int, config.schedule_time.split(":"))

    async def scheduled_backup():
        """Run scheduled backup."""
        logger.info("scheduled_backup_starting")
        result = await run_backup_cycle(config, state)
        logger.info(
            "scheduled_backup_completed",
            status=result.status.value,
            snapshot=result.snapshot,
            pruned=len(result.pruned),
        )

    scheduler.add_job(
        scheduled_backup,
        trigger=CronTrigger(
            hour=hour,
            minute=minute,
            jitter=config.randomized_delay_seconds or None,
        ),
        id=SCHEDULED_JOB_ID,
        replace_existing=True,
        # Run once if the process was down at the scheduled time
        misfire_grace_time=None,
        coalesce=True,
    )
    scheduler.start()

    logger.info(
        "scheduler_started",
        schedule=config.schedule_time,
        jitter_seconds=config.randomized_delay_seconds,
        next_run=scheduler.get_job(SCHEDULED_JOB_ID).next_run_time.isoformat(),
    )
    return scheduler


@asynccontextmanager
async def snapkeep_lifespan(app: FastAPI, config: SnapkeepConfig):
    """
    Alternative lifespan context manager for FastAPI.

    Use this instead of setup_snapkeep_plugin if you prefer the
    lifespan pattern:

        app = FastAPI(lifespan=lambda app: snapkeep_lifespan(app, config))

    Args:
        app: FastAPI application
        config: Snapkeep configuration
    """
    logger.info("snapkeep_lifespan_starting")

    app.state.snapkeep_config = config
    app.state.snapkeep_scheduler = None
    state = await _startup(app, config, "/admin/snapkeep")

    logger.info("snapkeep_lifespan_started")

    try:
        yield
    finally:
        logger.info("snapkeep_lifespan_stopping")
        await _shutdown(app, config, state)
        logger.info("snapkeep_lifespan_stopped")


def get_snapkeep_state(app: FastAPI) -> KeeperState:
    """
    Get snapkeep state from a FastAPI app.

    Useful for accessing state in custom endpoints.

    Raises:
        RuntimeError: If snapkeep not initialized
    """
    state = getattr(app.state, "snapkeep_state", None)
    if not state:
        raise RuntimeError("Snapkeep not initialized. Call setup_snapkeep_plugin first.")
    return state


def get_snapkeep_config(app: FastAPI) -> SnapkeepConfig:
    """
    Get snapkeep config from a FastAPI app.

    Raises:
        RuntimeError: If snapkeep not initialized
    """
    config = getattr(app.state, "snapkeep_config", None)
    if not config:
        raise RuntimeError("Snapkeep not initialized. Call setup_snapkeep_plugin first.")
    return config
