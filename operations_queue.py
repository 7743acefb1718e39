#!/usr/bin/env python3

import queue
import threading
import time
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, Any, List, Optional
from models import LogEntry, ReconcileResult
from reconcile_engine import ReconcileEngine

logger = logging.getLogger(__name__)

ResultListener = Callable[[ReconcileResult], None]


class QueueState:
    """Completion/error channel: what happened to entries after they were acknowledged"""

    def __init__(self, max_recent_failures: int = 50):
        self.lock = threading.Lock()
        self.accepted = 0
        self.processed = 0
        self.succeeded = 0
        self.failed = 0
        self.structural_changes = 0
        self.is_processing = False
        self.last_processed_at: Optional[datetime] = None
        self.recent_failures: Deque[Dict[str, Any]] = deque(maxlen=max_recent_failures)

    def record(self, result: ReconcileResult):
        with self.lock:
            self.processed += 1
            self.last_processed_at = datetime.now(timezone.utc)
            if result.success:
                self.succeeded += 1
                if result.created_structure:
                    self.structural_changes += 1
            else:
                self.failed += 1
                self.recent_failures.append({
                    "log_kind_name": result.entry.log_kind_name,
                    "sub_kind_name": result.entry.sub_kind_name,
                    "unix_time": result.entry.unix_time,
                    "error": result.error,
                    "failed_at": self.last_processed_at.isoformat(),
                })

    def to_dict(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "accepted": self.accepted,
                "processed": self.processed,
                "succeeded": self.succeeded,
                "failed": self.failed,
                "structural_changes": self.structural_changes,
                "is_processing": self.is_processing,
                "last_processed_at": (
                    self.last_processed_at.isoformat() if self.last_processed_at else None
                ),
                "recent_failures": list(self.recent_failures),
            }


class OperationsQueue:
    """
    Fire-and-forget processing of accepted log entries.

    Callers enqueue and return immediately. One worker thread runs each entry
    through the reconcile engine in arrival order, so reconciliations never
    overlap. Outcomes are published on the queue state and to any listeners.
    """

    def __init__(self, reconcile_engine: ReconcileEngine, max_recent_failures: int = 50):
        self.reconcile_engine = reconcile_engine
        self.request_queue: "queue.Queue[LogEntry]" = queue.Queue()
        self.state = QueueState(max_recent_failures)
        self._listeners: List[ResultListener] = []

        # Start worker thread
        self.worker_thread = threading.Thread(target=self._worker_loop, daemon=True)
        self.worker_thread.start()

    def enqueue_log_entry(self, entry: LogEntry):
        """Accept an entry for background processing"""
        logger.debug(
            f"Enqueuing log entry {entry.log_kind_name}/{entry.sub_kind_name} at {entry.received_at}"
        )
        with self.state.lock:
            self.state.accepted += 1
        self.request_queue.put(entry)

    def add_listener(self, listener: ResultListener):
        """Register a callback invoked with every ReconcileResult"""
        self._listeners.append(listener)

    def _worker_loop(self):
        """Main worker loop that processes log entries"""
        while True:
            try:
                entry = self.request_queue.get(timeout=1.0)
            except queue.Empty:
                continue

            try:
                self._process(entry)
            except Exception as e:
                logger.error(f"Error in worker loop: {e}")
            finally:
                self.request_queue.task_done()

    def _process(self, entry: LogEntry):
        self.state.is_processing = True
        try:
            result = self.reconcile_engine.resolve_and_append(entry)
        finally:
            self.state.is_processing = False

        self.state.record(result)
        if not result.success:
            logger.error(
                f"Log entry for {entry.log_kind_name}/{entry.sub_kind_name} was not stored: {result.error}"
            )

        for listener in self._listeners:
            try:
                listener(result)
            except Exception as e:
                logger.error(f"Error in result listener: {e}")

    def wait_for_empty_queue(self, timeout: Optional[float] = None) -> bool:
        """Wait until every enqueued entry has been processed"""
        if timeout is None:
            self.request_queue.join()
            return True

        deadline = time.time() + timeout
        while self.request_queue.unfinished_tasks:
            if time.time() > deadline:
                return False
            time.sleep(0.05)
        return True

    def get_queue_size(self) -> int:
        return self.request_queue.qsize()

    def get_status(self) -> Dict[str, Any]:
        status = self.state.to_dict()
        status["queue_size"] = self.get_queue_size()
        return status
