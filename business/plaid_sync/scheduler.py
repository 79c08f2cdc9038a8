from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Optional

from integrations.plaid import PlaidClient

from business.plaid_sync.models import PlaidItemStatus, SchedulerRunSummary, SyncType
from business.plaid_sync.service import run_item_sync
from database.supabase import plaid_item as plaid_item_repo
from utils.constants import SYNC_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class SchedulerState:
    """Tracks whether a scheduled sync pass is in progress.

    Injected into the scheduler so separate schedulers (e.g. in tests) never share it.
    """

    def __init__(self) -> None:
        self._syncing = False

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def try_begin(self) -> bool:
        if self._syncing:
            return False
        self._syncing = True
        return True

    def finish(self) -> None:
        self._syncing = False


class SyncScheduler:
    """Periodically syncs every ACTIVE Plaid item, one item at a time."""

    def __init__(
        self,
        plaid_client: PlaidClient,
        state: Optional[SchedulerState] = None,
        interval_seconds: int = SYNC_INTERVAL_SECONDS,
    ) -> None:
        self.plaid_client = plaid_client
        self.state = state or SchedulerState()
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_syncing(self) -> bool:
        return self.state.is_syncing

    def start(self) -> None:
        """Start the interval loop on the running event loop."""
        if self.is_running:
            logger.info("Sync scheduler already running")
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Sync scheduler started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Sync scheduler stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_sync()
            except Exception as e:
                logger.error(f"Sync scheduler pass crashed: {e}")

    async def run_sync(self) -> SchedulerRunSummary:
        """Sync all ACTIVE items sequentially.

        Items in PENDING_REAUTH, REVOKED or ERROR are left for the user to fix.
        A failing item is logged and the pass moves on. Returns a skipped summary
        when another pass is still running.
        """
        if not self.state.try_begin():
            logger.info("Sync already in progress, skipping")
            return SchedulerRunSummary(skipped=True)

        started = time.monotonic()
        summary = SchedulerRunSummary()
        try:
            items = await asyncio.to_thread(
                plaid_item_repo.list_plaid_items_by_status, PlaidItemStatus.ACTIVE.value
            )
            summary.items = len(items)
            logger.info(f"Found {len(items)} items to sync")

            for item in items:
                try:
                    # One item at a time, off the event loop
                    result = await asyncio.to_thread(
                        run_item_sync,
                        plaid_client=self.plaid_client,
                        item_db_id=item.id,
                        sync_type=SyncType.SCHEDULED,
                    )
                    summary.succeeded += 1
                    logger.info(
                        f"Synced {item.display_name}: +{result.added} "
                        f"~{result.modified} -{result.removed}"
                    )
                except Exception as e:
                    summary.failed += 1
                    logger.error(f"Failed to sync {item.display_name}: {e}")
        finally:
            self.state.finish()

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            json.dumps(
                {
                    "event": "plaid_sync.scheduler_run_completed",
                    "items": summary.items,
                    "succeeded": summary.succeeded,
                    "failed": summary.failed,
                    "duration_ms": summary.duration_ms,
                }
            )
        )
        return summary
