# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Best-effort activity log.

Mutations record who did what through ``ActivityLog.record``. Entries are
put on a bounded queue and written to the ``logs`` table by a daemon
worker thread, so a slow or failing log write never delays or fails the
mutation that produced it.
"""

import logging
import queue
import threading
from datetime import datetime, timezone
from typing import Any, Optional

from .storage import TableStore

logger = logging.getLogger(__name__)

MAX_DETAILS_LENGTH = 1000

_STOP = object()


class ActivityLog:
    """
    Bounded queue of activity entries drained into storage.

    ``record`` never blocks and never raises: when the queue is full the
    entry is dropped with a warning. Storage failures in the worker are
    logged and the entry is discarded.
    """

    def __init__(self, store: TableStore, maxsize: int = 256):
        self.store = store
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._running = True
        self._worker = threading.Thread(
            target=self._drain_loop, name="activity-log", daemon=True
        )
        self._worker.start()

    def record(
        self,
        user_id: Optional[int],
        action: str,
        entity: str,
        entity_id: Optional[int] = None,
        details: Any = "",
    ) -> bool:
        """
        Queue one activity entry.

        Returns False when the entry was dropped (log closed or queue full).
        """
        if not self._running:
            logger.debug("Activity log closed, dropping %s", action)
            return False

        row = {
            "user_id": user_id,
            "action": action,
            "entity": entity,
            "entity_id": entity_id,
            "details": str(details or "")[:MAX_DETAILS_LENGTH],
            "created_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        try:
            self._queue.put_nowait(row)
        except queue.Full:
            logger.warning("Activity log queue full, dropping %s", action)
            return False
        return True

    def _drain_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self.store.insert_rows("logs", [item])
            except Exception as e:
                logger.warning(f"Failed to write activity entry {item.get('action')}: {e}")
            finally:
                self._queue.task_done()

    def flush(self) -> None:
        """Block until every queued entry has been processed."""
        self._queue.join()

    def close(self, timeout: float = 5.0) -> None:
        """Drain the remaining entries and stop the worker thread."""
        if not self._running:
            return
        self._running = False
        self._queue.put(_STOP)
        self._worker.join(timeout=timeout)

    @property
    def is_running(self) -> bool:
        return self._running
