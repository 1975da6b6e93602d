# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example application with SnapVault backups.

Backs up the app's records and media, prints progress, lists the catalog
and optionally restores the newest backup.

Run with:
    python examples/basic_app.py            # create a backup
    python examples/basic_app.py --restore  # restore the newest backup

Environment variables:
    APP_DATA_DIR: Directory holding records/ and media/ (default: ./app_data)
    SNAPVAULT_S3_BUCKET: Upload backups to this bucket (optional)
    AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY: S3 credentials
"""

import asyncio
import os
import sys
from pathlib import Path

from snapvault import (
    ProgressChannel,
    create_backup,
    describe_failure,
    initialize_state,
    list_backups,
    restore_backup,
    setup_auto_backup,
    shutdown_state,
)
from snapvault.builder import (
    auto_backup_every,
    build_from_steps,
    enable_vault,
    keep_last,
    upload_to_s3,
    with_device,
    with_media,
    with_records,
)
from snapvault.exceptions import NetworkError, SnapVaultError


def create_snapvault_config():
    """
    Create SnapVault configuration for the example app.

    This uses the functional builder pattern for clean, composable configuration.
    """
    data_dir = Path(os.getenv("APP_DATA_DIR", "./app_data"))
    bucket = os.getenv("SNAPVAULT_S3_BUCKET")

    steps = [
        lambda c: with_records(c, data_dir / "records"),
        lambda c: with_media(c, data_dir / "media"),
        lambda c: enable_vault(c, data_dir.parent / "snapvault_vault"),
        lambda c: with_device(c, os.getenv("HOSTNAME", "example-device"), "1.0.0"),
        lambda c: auto_backup_every(c, 24, include_media=False),
        lambda c: keep_last(c, 7),
    ]
    if bucket:
        steps.append(lambda c: upload_to_s3(c, bucket, region=os.getenv("AWS_REGION", "us-east-1")))

    return build_from_steps(*steps)


async def print_progress(channel: ProgressChannel) -> None:
    async for progress in channel:
        print(f"[{progress.percent:5.1f}%] {progress.stage.value:<12} {progress.current_item or ''}")


async def main(restore: bool) -> int:
    config = create_snapvault_config()
    state = await initialize_state(config)

    try:
        if restore:
            backups = await list_backups(state, limit=1)
            if not backups:
                print("No backups to restore")
                return 1
            channel = ProgressChannel()
            printer = asyncio.create_task(print_progress(channel))
            result = await restore_backup(config, state, backups[0].id, on_progress=channel.send)
            await printer
            print(f"Restored {result.restored_file_count} files from {result.backup_id}")
            return 0

        channel = ProgressChannel()
        printer = asyncio.create_task(print_progress(channel))
        try:
            record = await create_backup(
                config,
                state,
                upload_remote=state["remote_store"] is not None,
                on_progress=channel.send,
            )
        except NetworkError as e:
            record = e.record
            print("Upload failed; the backup was kept on this device")
        finally:
            await printer
        print(f"Backup {record.id}: {record.file_count} files, {record.archive_size_bytes} bytes")

        for backup in await list_backups(state):
            where = "remote" if backup.is_remote else "local"
            print(f"  {backup.id}  {backup.created_at:%Y-%m-%d %H:%M}  {backup.file_count:>5} files  {where}")

        # Keep running to let the scheduler create daily backups
        if os.getenv("SNAPVAULT_DAEMON"):
            setup_auto_backup(config, state)
            await asyncio.Event().wait()
        return 0
    except SnapVaultError as e:
        print(describe_failure(e), file=sys.stderr)
        return 1
    finally:
        await shutdown_state(state)


if __name__ == "__main__":
    sys.exit(asyncio.run(main("--restore" in sys.argv)))
