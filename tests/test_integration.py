# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Integration Tests for snapkeep.

Tests the admin API, configuration layers, the CLI, unit rendering and
the journaled orchestration functions.
"""

import json
from datetime import datetime, timedelta, UTC
from pathlib import Path

import aiosqlite
import pytest

from conftest import make_live_db, make_snapshot, read_rows
from snapkeep.config import CompressionCodec, OperationStatus, SnapkeepConfig
from snapkeep.exceptions import ConfigurationError

AUTH = {"Authorization": "Bearer test-api-key-12345"}


# ============================================================================
# FastAPI Integration Tests
# ============================================================================

async def _client(config: SnapkeepConfig):
    from fastapi import FastAPI
    from httpx import AsyncClient, ASGITransport

    from snapkeep.core import initialize_state
    from snapkeep.integrations.fastapi import register_snapkeep_routes

    app = FastAPI()
    state = await initialize_state(config)
    register_snapkeep_routes(app, config, state)

    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://test"), state


@pytest.mark.asyncio
async def test_fastapi_status_endpoint(test_config):
    client, _ = await _client(test_config)
    async with client:
        response = await client.get("/admin/snapkeep/status", headers=AUTH)

        assert response.status_code == 200
        data = response.json()
        assert data["db_name"] == "app.db"
        assert data["live_database_present"] is False
        assert data["total_backups"] == 0
        assert data["newest_snapshot"] is None


@pytest.mark.asyncio
async def test_fastapi_unauthorized_access(test_config):
    """Test that endpoints require authentication."""
    client, _ = await _client(test_config)
    async with client:
        # No auth header
        response = await client.get("/admin/snapkeep/status")
        assert response.status_code == 401

        # Wrong API key
        response = await client.get(
            "/admin/snapkeep/status",
            headers={"Authorization": "Bearer wrong-key"},
        )
        assert response.status_code == 403

        response = await client.post("/admin/snapkeep/backup")
        assert response.status_code == 401


@pytest.mark.asyncio
async def test_fastapi_missing_admin_key(test_config, monkeypatch):
    monkeypatch.delenv("SNAPKEEP_ADMIN_API_KEY")
    client, _ = await _client(test_config)
    async with client:
        response = await client.get("/admin/snapkeep/status", headers=AUTH)
        assert response.status_code == 500
        assert "SNAPKEEP_ADMIN_API_KEY" in response.json()["detail"]


@pytest.mark.asyncio
async def test_fastapi_backup_and_snapshots(test_config):
    await make_live_db(test_config.live_db_path)
    client, state = await _client(test_config)
    async with client:
        response = await client.post("/admin/snapkeep/backup", headers=AUTH)

        assert response.status_code == 200
        result = response.json()
        assert result["status"] == "success"
        assert result["snapshot"].endswith(".db.gz")
        assert state["total_backups"] == 1

        response = await client.get("/admin/snapkeep/snapshots", headers=AUTH)
        assert [s["name"] for s in response.json()] == [result["snapshot"]]

        response = await client.get("/admin/snapkeep/operations", headers=AUTH)
        operations = response.json()
        assert len(operations) == 1
        assert operations[0]["kind"] == "backup"
        assert operations[0]["id"] == result["operation_id"]


@pytest.mark.asyncio
async def test_fastapi_restore_endpoint(test_config):
    await make_snapshot(test_config.backup_dir, "app.db", datetime.now(UTC), rows=[3])
    client, state = await _client(test_config)
    async with client:
        response = await client.post("/admin/snapkeep/restore", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["status"] == "success"
        assert state["total_restores"] == 1
        assert await read_rows(test_config.live_db_path) == {3}

        # Second call never overwrites
        response = await client.post("/admin/snapkeep/restore", headers=AUTH)
        assert response.json()["status"] == "skipped"


@pytest.mark.asyncio
async def test_fastapi_prune_defaults_to_dry_run(test_config):
    await make_snapshot(test_config.backup_dir, "app.db", datetime(2020, 1, 1, tzinfo=UTC))
    await make_snapshot(test_config.backup_dir, "app.db", datetime(2020, 1, 2, tzinfo=UTC))
    client, _ = await _client(test_config)
    async with client:
        response = await client.post("/admin/snapkeep/prune", headers=AUTH)
        assert response.json()["dry_run"] is True
        assert len(response.json()["removed"]) == 1

        response = await client.post("/admin/snapkeep/prune?dry_run=false", headers=AUTH)
        assert response.json()["removed"] == ["app.db_20200101_000000.db.gz"]


@pytest.mark.asyncio
async def test_fastapi_health_metrics_and_config(test_config):
    await make_live_db(test_config.live_db_path)
    client, _ = await _client(test_config)
    async with client:
        await client.post("/admin/snapkeep/backup", headers=AUTH)

        health = (await client.get("/admin/snapkeep/health", headers=AUTH)).json()
        assert health["status"] == "healthy"
        assert health["live_database_present"] is True
        assert health["archive_writable"] is True

        metrics = (await client.get("/admin/snapkeep/metrics", headers=AUTH)).json()
        assert metrics["snapshot_count"] == 1
        assert metrics["total_backups"] == 1
        assert metrics["journal"]["total_operations"] == 1

        config = (await client.get("/admin/snapkeep/config", headers=AUTH)).json()
        assert config["db_name"] == "app.db"
        assert config["file_mode"] == "0644"
        assert config["compression"] == "gzip"


@pytest.mark.asyncio
async def test_lifespan_restores_schedules_and_backs_up(test_config):
    from fastapi import FastAPI

    from snapkeep.backup.manager import list_snapshots
    from snapkeep.integrations.fastapi import (
        SCHEDULED_JOB_ID,
        get_snapkeep_config,
        get_snapkeep_state,
        snapkeep_lifespan,
    )

    config = test_config.with_updates(schedule_time="02:00")
    await make_snapshot(
        config.backup_dir, "app.db", datetime.now(UTC) - timedelta(days=1), rows=[5]
    )

    app = FastAPI()
    async with snapkeep_lifespan(app, config):
        assert get_snapkeep_config(app) is config
        state = get_snapkeep_state(app)
        assert state["total_restores"] == 1
        assert await read_rows(config.live_db_path) == {5}
        assert app.state.snapkeep_scheduler.get_job(SCHEDULED_JOB_ID) is not None

        async with aiosqlite.connect(config.live_db_path) as db:
            await db.execute("INSERT INTO items (id) VALUES (6)")
            await db.commit()

    # Shutdown backup
    assert state["total_backups"] == 1
    assert app.state.snapkeep_scheduler is None
    assert len(list_snapshots(config)) == 2


# ============================================================================
# Orchestration
# ============================================================================

@pytest.mark.asyncio
async def test_run_cycles_record_journal(test_config):
    from snapkeep.core import get_metrics, initialize_state, run_backup_cycle, run_restore_cycle
    from snapkeep.vault.journal import list_operations

    state = await initialize_state(test_config)
    assert state["journal_db_path"] == test_config.journal_path

    await make_live_db(test_config.live_db_path)
    backup = await run_backup_cycle(test_config, state)
    test_config.live_db_path.unlink()
    restore = await run_restore_cycle(test_config, state)

    assert backup.status is OperationStatus.SUCCESS
    assert restore.status is OperationStatus.SUCCESS
    assert state["last_backup"] is backup
    assert state["last_restore"] is restore

    async with aiosqlite.connect(test_config.journal_path) as db:
        records = await list_operations(db)
    assert {r["kind"] for r in records} == {"backup", "restore"}

    metrics = await get_metrics(test_config, state)
    assert metrics.total_backups == 1
    assert metrics.total_restores == 1
    assert metrics.total_failures == 0


@pytest.mark.asyncio
async def test_failures_are_counted_and_journaled(test_config):
    from snapkeep.core import initialize_state, run_restore_cycle
    from snapkeep.vault.journal import list_operations

    test_config.backup_dir.mkdir(parents=True)
    (test_config.backup_dir / "app.db_20240101_020000.db.gz").write_bytes(b"junk")

    state = await initialize_state(test_config)
    result = await run_restore_cycle(test_config, state)

    assert result.status is OperationStatus.FAILED
    assert state["total_failures"] == 1
    assert state["last_error"] == result.error

    async with aiosqlite.connect(test_config.journal_path) as db:
        records = await list_operations(db)
    assert records[0]["error_kind"] == "corrupt_restore"


@pytest.mark.asyncio
async def test_prune_cycle_journals_real_runs_only(test_config):
    from snapkeep.core import initialize_state, run_prune_cycle
    from snapkeep.vault.journal import list_operations

    now = datetime.now(UTC)
    for days_old in (45, 40, 1):
        await make_snapshot(test_config.backup_dir, "app.db", now - timedelta(days=days_old))

    state = await initialize_state(test_config)
    preview = await run_prune_cycle(test_config, state, dry_run=True)

    assert len(preview.removed) == 2
    async with aiosqlite.connect(test_config.journal_path) as db:
        assert await list_operations(db, kind="prune") == []

    summary = await run_prune_cycle(test_config, state)

    assert summary.removed == preview.removed
    async with aiosqlite.connect(test_config.journal_path) as db:
        records = await list_operations(db, kind="prune")
    assert len(records) == 1
    assert records[0]["stats"]["removed"] == summary.removed


@pytest.mark.asyncio
async def test_journal_disabled_writes_nothing(test_config):
    from snapkeep.core import run_backup_cycle

    config = test_config.with_updates(journal_enabled=False)
    await make_live_db(config.live_db_path)

    await run_backup_cycle(config)

    assert not config.journal_path.exists()


@pytest.mark.asyncio
async def test_journal_failure_does_not_fail_backup(test_config, monkeypatch):
    from snapkeep.core import run_backup_cycle
    from snapkeep.exceptions import JournalError

    async def broken_init(db_path):
        raise JournalError("read-only filesystem")

    monkeypatch.setattr("snapkeep.core.init_journal_db", broken_init)
    await make_live_db(test_config.live_db_path)

    result = await run_backup_cycle(test_config)

    assert result.status is OperationStatus.SUCCESS


# ============================================================================
# Configuration
# ============================================================================

@pytest.mark.asyncio
async def test_config_validation():
    """Test configuration validation."""
    # Valid config
    config = SnapkeepConfig(db_name="pharmastock.db")
    assert config.live_db_path == Path("/var/cache/app/pharmastock.db")
    assert config.lock_path == Path("/var/cache/app/.pharmastock.db.lock")

    # Every problem is reported at once
    with pytest.raises(ConfigurationError) as exc_info:
        SnapkeepConfig(
            db_name="../escape.db",
            retention_days=-1,
            retention_keep_minimum=0,
            schedule_time="25:00",
        )
    errors = exc_info.value.details["errors"]
    assert len(errors) == 4

    with pytest.raises(ConfigurationError):
        SnapkeepConfig(compression="lz4")

    with pytest.raises(ConfigurationError):
        SnapkeepConfig(compression=CompressionCodec.GZIP, compression_level=12)


def test_config_normalizes_strings():
    config = SnapkeepConfig(cache_dir="/tmp/c", backup_dir="/tmp/b", compression="ZSTD")

    assert config.cache_dir == Path("/tmp/c")
    assert config.compression is CompressionCodec.ZSTD

    updated = config.with_updates(retention_days=7)
    assert updated.retention_days == 7
    assert config.retention_days == 30


def test_builder_functional_api():
    """Test the functional builder API."""
    from snapkeep.builder import (
        build_from_steps,
        create_config,
        keep_at_least,
        keep_snapshots_for,
        require_free_space,
        disable_journal,
        owned_by,
        run_daily_at,
        use_compression,
        with_db_name,
    )

    config = build_from_steps(
        lambda c: with_db_name(c, "pharmastock.db"),
        lambda c: keep_snapshots_for(c, 14),
        lambda c: keep_at_least(c, 3),
        lambda c: require_free_space(c, 50),
        lambda c: use_compression(c, "zstd", 10),
        lambda c: run_daily_at(c, "03:15"),
        lambda c: owned_by(c, 0, 0, 0o640),
        disable_journal,
    )

    assert config.db_name == "pharmastock.db"
    assert config.retention_days == 14
    assert config.retention_keep_minimum == 3
    assert config.min_free_bytes == 50 * 1024 * 1024
    assert config.compression is CompressionCodec.ZSTD
    assert config.compression_level == 10
    assert config.schedule_time == "03:15"
    assert (config.owner_uid, config.owner_gid, config.file_mode) == (0, 0, 0o640)
    assert config.journal_enabled is False

    with pytest.raises(ValueError):
        run_daily_at({}, "3pm")

    simple = create_config(
        "pharmastock.db",
        cache_dir="/var/cache/PharmaStock",
        backup_dir="/opt/PharmaStock_backups",
        schedule_time=None,
        busy_wait_seconds=1.5,
    )
    assert simple.backup_dir == Path("/opt/PharmaStock_backups")
    assert simple.schedule_time is None
    assert simple.busy_wait_seconds == 1.5


def test_config_from_env():
    from snapkeep.env import create_config_from_env

    config = create_config_from_env(
        {
            "SNAPKEEP_DB_NAME": "pharmastock.db",
            "SNAPKEEP_CACHE_DIR": "/var/cache/PharmaStock",
            "SNAPKEEP_BACKUP_DIR": "/opt/PharmaStock_backups",
            "SNAPKEEP_RETENTION_DAYS": "14",
            "SNAPKEEP_MIN_FREE_MB": "100",
            "SNAPKEEP_COMPRESSION": "zstd",
            "SNAPKEEP_FILE_MODE": "0o640",
            "SNAPKEEP_OWNER": "0:0",
            "SNAPKEEP_SCHEDULE_TIME": "off",
            "SNAPKEEP_JOURNAL": "no",
        }
    )

    assert config.live_db_path == Path("/var/cache/PharmaStock/pharmastock.db")
    assert config.retention_days == 14
    assert config.min_free_bytes == 100 * 1024 * 1024
    assert config.compression is CompressionCodec.ZSTD
    assert config.file_mode == 0o640
    assert (config.owner_uid, config.owner_gid) == (0, 0)
    assert config.schedule_time is None
    assert config.journal_enabled is False


def test_config_from_env_defaults():
    from snapkeep.env import create_config_from_env

    config = create_config_from_env({})

    assert config == SnapkeepConfig()


@pytest.mark.parametrize(
    "name, value",
    [
        ("SNAPKEEP_RETENTION_DAYS", "thirty"),
        ("SNAPKEEP_RETENTION_DAYS", "-3"),
        ("SNAPKEEP_COMPRESSION", "brotli"),
        ("SNAPKEEP_FILE_MODE", "rw-r--r--"),
        ("SNAPKEEP_FILE_MODE", "1777"),
        ("SNAPKEEP_JOURNAL", "maybe"),
        ("SNAPKEEP_KEEP_MINIMUM", "0"),
        ("SNAPKEEP_SCHEDULE_TIME", "2am"),
        ("SNAPKEEP_OWNER", "no-such-user-snapkeep:root"),
    ],
)
def test_config_from_env_rejects_bad_values(name, value):
    from snapkeep.env import create_config_from_env

    with pytest.raises(ConfigurationError):
        create_config_from_env({name: value})


# ============================================================================
# systemd units
# ============================================================================

def test_render_units(test_config):
    from snapkeep.integrations.systemd import render_units

    config = test_config.with_updates(schedule_time="02:00", unit_prefix="pharmastock")
    units = {unit.name: unit.content for unit in render_units(config)}

    assert set(units) == {
        "pharmastock-backup.service",
        "pharmastock-backup.timer",
        "pharmastock-shutdown-backup.service",
        "pharmastock-restore.service",
    }

    timer = units["pharmastock-backup.timer"]
    assert "OnCalendar=*-*-* 02:00:00" in timer
    assert "Persistent=true" in timer
    assert "RandomizedDelaySec=300" in timer

    shutdown = units["pharmastock-shutdown-backup.service"]
    assert "DefaultDependencies=no" in shutdown
    assert "Before=shutdown.target reboot.target halt.target" in shutdown
    assert "TimeoutStartSec=30" in shutdown
    assert "ExecStart=/usr/local/bin/snapkeep-backup" in shutdown

    restore = units["pharmastock-restore.service"]
    assert "After=local-fs.target" in restore
    assert "ExecStart=/usr/local/bin/snapkeep-restore" in restore
    assert f'"SNAPKEEP_CACHE_DIR={config.cache_dir}"' in restore
    assert f"RequiresMountsFor={config.cache_dir} {config.backup_dir}" in restore


def test_no_timer_without_schedule(test_config):
    from snapkeep.integrations.systemd import render_units

    names = [unit.name for unit in render_units(test_config)]

    assert "snapkeep-backup.timer" not in names
    assert len(names) == 3


def test_unit_environment_round_trips_through_env(test_config):
    from snapkeep.env import create_config_from_env
    from snapkeep.integrations.systemd import unit_environment

    config = test_config.with_updates(
        compression=CompressionCodec.ZSTD,
        compression_level=5,
        file_mode=0o600,
        min_free_bytes=64 * 1024 * 1024,
    )
    rebuilt = create_config_from_env(unit_environment(config))

    for name in ("db_name", "cache_dir", "backup_dir", "compression", "compression_level",
                 "file_mode", "min_free_bytes", "busy_wait_seconds", "retention_days"):
        assert getattr(rebuilt, name) == getattr(config, name)


def test_write_units(test_config, temp_dir: Path):
    from snapkeep.integrations.systemd import write_units

    written = write_units(test_config, temp_dir / "units", before=["pharmastock.service"])

    assert len(written) == 3
    for path in written:
        assert path.stat().st_mode & 0o777 == 0o644
    restore = (temp_dir / "units" / "snapkeep-restore.service").read_text()
    assert "Before=pharmastock.service" in restore


# ============================================================================
# CLI
# ============================================================================

def _cli_env(monkeypatch, config: SnapkeepConfig) -> None:
    monkeypatch.setenv("SNAPKEEP_CACHE_DIR", str(config.cache_dir))
    monkeypatch.setenv("SNAPKEEP_BACKUP_DIR", str(config.backup_dir))
    monkeypatch.setenv("SNAPKEEP_MIN_FREE_MB", "0")
    monkeypatch.setenv("SNAPKEEP_BUSY_WAIT_SECONDS", "0.05")


def test_cli_backup_and_restore(test_config, monkeypatch, capsys):
    import asyncio

    from snapkeep.cli import main

    _cli_env(monkeypatch, test_config)
    asyncio.run(make_live_db(test_config.live_db_path, rows=[1, 2, 3]))

    assert main(["backup"]) == 0
    backup = json.loads(capsys.readouterr().out)
    assert backup["status"] == "success"

    test_config.live_db_path.unlink()
    assert main(["restore"]) == 0
    restore = json.loads(capsys.readouterr().out)
    assert restore["snapshot"] == backup["snapshot"]
    assert asyncio.run(read_rows(test_config.live_db_path)) == {1, 2, 3}

    assert main(["list"]) == 0
    assert backup["snapshot"] in capsys.readouterr().out

    assert main(["verify"]) == 0
    assert json.loads(capsys.readouterr().out)["valid"] is True

    assert main(["journal", "--limit", "5"]) == 0
    kinds = [r["kind"] for r in json.loads(capsys.readouterr().out)]
    assert kinds == ["restore", "backup"]


def test_cli_exit_code_for_corrupt_restore(test_config, monkeypatch):
    from snapkeep.cli import main

    _cli_env(monkeypatch, test_config)
    test_config.backup_dir.mkdir(parents=True)
    (test_config.backup_dir / "app.db_20240101_020000.db.gz").write_bytes(b"junk" * 10)

    assert main(["restore"]) == 6


def test_cli_exit_code_for_configuration_error(monkeypatch, capsys):
    from snapkeep.cli import main

    monkeypatch.setenv("SNAPKEEP_RETENTION_DAYS", "soon")

    assert main(["backup"]) == 2
    assert "SNAPKEEP_RETENTION_DAYS" in capsys.readouterr().err


def test_cli_flags_override_environment(test_config, monkeypatch, capsys):
    from snapkeep.cli import main

    _cli_env(monkeypatch, test_config)

    assert main(["--db-name", "other.db", "backup"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["reason"] == "live_database_missing"


def test_cli_units_to_directory(test_config, monkeypatch, temp_dir: Path):
    from snapkeep.cli import main

    _cli_env(monkeypatch, test_config)

    assert main(["units", "--output", str(temp_dir / "units")]) == 0
    assert (temp_dir / "units" / "snapkeep-backup.timer").exists()


def test_cli_verify_missing_snapshot(test_config, monkeypatch):
    from snapkeep.cli import main

    _cli_env(monkeypatch, test_config)

    assert main(["verify", "app.db_20990101_000000.db.gz"]) == 3
