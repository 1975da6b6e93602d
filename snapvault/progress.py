# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault Progress - Progress reporting and cancellation for operations.

An orchestrator owns one ProgressReporter per operation. The reporter keeps
the mutable ProgressState, enforces that percent never goes backwards and
only reaches 100 on completion, and pushes a snapshot to the caller's sink
on every change. Sinks may be plain callables or coroutine functions.
"""

import asyncio
import inspect
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable

import structlog

from snapvault.exceptions import OperationCancelled

logger = structlog.get_logger()


class Stage(str, Enum):
    """Pipeline stage reported to the caller."""

    PREPARING = "preparing"
    COLLECTING = "collecting"
    COMPRESSING = "compressing"
    ENCRYPTING = "encrypting"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STAGES = {Stage.COMPLETED, Stage.FAILED}


@dataclass
class ProgressState:
    """Progress of one backup or restore operation."""

    operation: str  # "backup" or "restore"
    stage: Stage = Stage.PREPARING
    percent: float = 0.0
    current_item: str | None = None
    processed_items: int = 0
    total_items: int = 0


ProgressSink = Callable[[ProgressState], Any]


class CancelToken:
    """
    Cooperative cancellation flag.

    The orchestrator checks it at the end of every file or chunk and
    aborts with OperationCancelled, running the normal failure cleanup.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled("Operation cancelled by caller")


class ProgressReporter:
    """
    Drives a ProgressState through the stages of one operation.

    Each stage owns a slice [start, end] of the 0-100 range; work inside a
    stage is reported as a fraction of that slice.
    """

    def __init__(
        self,
        operation: str,
        sink: ProgressSink | None = None,
        cancel_token: CancelToken | None = None,
    ) -> None:
        self.state = ProgressState(operation=operation)
        self._sink = sink
        self._cancel_token = cancel_token
        self._slice = (0.0, 0.0)

    @property
    def stage(self) -> Stage:
        return self.state.stage

    def checkpoint(self) -> None:
        """Raise OperationCancelled if the caller asked to stop."""
        if self._cancel_token is not None:
            self._cancel_token.raise_if_cancelled()

    async def enter_stage(
        self,
        stage: Stage,
        start: float,
        end: float,
        current_item: str | None = None,
        total_items: int = 0,
    ) -> None:
        """Switch to a new stage covering percents [start, end]."""
        self.state.stage = stage
        self.state.current_item = current_item
        self.state.processed_items = 0
        self.state.total_items = total_items
        self._slice = (start, end)
        self._set_percent(start)
        await self._emit()

    async def advance(
        self,
        fraction: float,
        current_item: str | None = None,
        processed_items: int | None = None,
    ) -> None:
        """Report progress as a fraction (0.0-1.0) of the current stage."""
        fraction = min(max(fraction, 0.0), 1.0)
        start, end = self._slice
        self._set_percent(start + (end - start) * fraction)
        if current_item is not None:
            self.state.current_item = current_item
        if processed_items is not None:
            self.state.processed_items = processed_items
        await self._emit()

    def track_items(self) -> Callable[[int, int, str], Awaitable[None]]:
        """Callback reporting (processed, total, item) as stage progress."""

        async def on_item(processed: int, total: int, item: str) -> None:
            await self.advance(
                processed / total if total else 1.0,
                current_item=item,
                processed_items=processed,
            )

        return on_item

    def track_bytes(self) -> "TransferCallback":
        """Callback reporting (done, total) bytes as stage progress."""

        async def on_bytes(done: int, total: int) -> None:
            await self.advance(done / total if total else 1.0)
            self.checkpoint()

        return on_bytes

    async def complete(self, message: str | None = None) -> None:
        self.state.stage = Stage.COMPLETED
        self.state.percent = 100.0
        self.state.current_item = message
        await self._emit()

    async def fail(self, message: str | None = None) -> None:
        if self.state.stage in TERMINAL_STAGES:
            return
        self.state.stage = Stage.FAILED
        self.state.current_item = message
        await self._emit()

    def _set_percent(self, percent: float) -> None:
        # Monotonic, and 100 is reserved for completion
        self.state.percent = max(self.state.percent, min(round(percent, 2), 99.0))

    async def _emit(self) -> None:
        if self._sink is None:
            return
        snapshot = replace(self.state)
        try:
            result = self._sink(snapshot)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # A broken sink must not abort the pipeline
            logger.warning(
                "progress_sink_failed",
                operation=self.state.operation,
                stage=self.state.stage.value,
                error=str(e),
            )


class ProgressChannel:
    """
    Message-passing adapter: use `channel.send` as the sink and iterate the
    channel from another task to receive ProgressState snapshots.

        channel = ProgressChannel()
        task = asyncio.create_task(create_backup(config, state, on_progress=channel.send))
        async for progress in channel:
            render(progress)
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[ProgressState] = asyncio.Queue(maxsize=maxsize)

    async def send(self, progress: ProgressState) -> None:
        await self._queue.put(progress)

    async def get(self) -> ProgressState:
        return await self._queue.get()

    def __aiter__(self) -> AsyncIterator[ProgressState]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressState]:
        while True:
            progress = await self._queue.get()
            yield progress
            if progress.stage in TERMINAL_STAGES:
                return


TransferCallback = Callable[[int, int], Awaitable[None]]
