# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Operation Guard - At most one backup or restore at a time.

A second request while an operation is active fails immediately with
ConcurrencyError instead of queuing behind it.
"""

import threading
from contextlib import contextmanager
from datetime import datetime, UTC
from typing import Iterator

import structlog

from snapvault.exceptions import ConcurrencyError

logger = structlog.get_logger()


class OperationGuard:
    """Non-blocking mutual exclusion over create/restore/delete operations."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: str | None = None
        self._since: datetime | None = None

    @property
    def active_operation(self) -> str | None:
        return self._active

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self, operation: str) -> Iterator[None]:
        """
        Hold the guard for the duration of an operation.

        Raises:
            ConcurrencyError: If another operation holds the guard
        """
        if not self._lock.acquire(blocking=False):
            logger.warning(
                "operation_rejected_busy",
                requested=operation,
                active=self._active,
            )
            raise ConcurrencyError(
                "Another backup or restore operation is in progress",
                details={
                    "requested": operation,
                    "active": self._active,
                    "active_since": self._since.isoformat() if self._since else None,
                },
            )
        self._active = operation
        self._since = datetime.now(UTC)
        try:
            yield
        finally:
            self._active = None
            self._since = None
            self._lock.release()
