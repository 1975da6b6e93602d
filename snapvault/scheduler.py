# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Scheduler - Automatic periodic backups.

The scheduler wakes up every hour and creates a backup once the newest
backup is older than the configured interval, so a device that was off
at the scheduled moment catches up on the next check.
"""

from datetime import datetime, timedelta, UTC

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from snapvault.backup import create_backup
from snapvault.config import SnapVaultConfig
from snapvault.core import VaultState
from snapvault.exceptions import ConcurrencyError, ConfigurationError, NetworkError, SnapVaultError
from snapvault.vault import BackupRecord

logger = structlog.get_logger()

AUTO_BACKUP_JOB_ID = "snapvault_auto_backup"
CHECK_INTERVAL_MINUTES = 60


def is_auto_backup_due(
    last_created_at: datetime | None,
    now: datetime,
    interval_hours: int,
) -> bool:
    """A backup is due when none exists or the newest one is older than the interval."""
    if last_created_at is None:
        return True
    return now - last_created_at >= timedelta(hours=interval_hours)


async def run_auto_backup(config: SnapVaultConfig, state: VaultState) -> BackupRecord | None:
    """
    Create a backup if one is due.

    Returns:
        The new record, or None if no backup was made
    """
    if config.auto_backup_interval_hours is None:
        return None

    now = datetime.now(UTC)
    if not is_auto_backup_due(state["last_backup_at"], now, config.auto_backup_interval_hours):
        logger.debug("auto_backup_not_due", last_backup_at=state["last_backup_at"])
        return None

    logger.info("auto_backup_starting")
    try:
        record = await create_backup(
            config,
            state,
            include_media=config.auto_backup_include_media,
            upload_remote=state["remote_store"] is not None,
        )
    except ConcurrencyError:
        logger.info("auto_backup_skipped_busy")
        return None
    except NetworkError as e:
        logger.warning("auto_backup_upload_failed", error=str(e))
        return e.record
    except SnapVaultError as e:
        logger.error("auto_backup_failed", error=str(e), error_type=type(e).__name__)
        return None

    logger.info("auto_backup_completed", backup_id=record.id, file_count=record.file_count)
    return record


def setup_auto_backup(config: SnapVaultConfig, state: VaultState) -> AsyncIOScheduler:
    """
    Start the automatic backup job.

    Must be called from a running event loop. The first check runs an
    hour after start; call run_auto_backup() directly to check at
    startup. The scheduler is stored in the state so shutdown_state() can
    stop it.

    Raises:
        ConfigurationError: If auto_backup_interval_hours is not set
    """
    if config.auto_backup_interval_hours is None:
        raise ConfigurationError("auto_backup_interval_hours is not configured")

    scheduler = AsyncIOScheduler(timezone=UTC)

    async def scheduled_backup():
        await run_auto_backup(config, state)

    scheduler.add_job(
        scheduled_backup,
        trigger=IntervalTrigger(minutes=CHECK_INTERVAL_MINUTES, timezone=UTC),
        id=AUTO_BACKUP_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    state["scheduler"] = scheduler

    logger.info(
        "auto_backup_scheduler_started",
        interval_hours=config.auto_backup_interval_hours,
        next_run=scheduler.get_job(AUTO_BACKUP_JOB_ID).next_run_time.isoformat(),
    )
    return scheduler
