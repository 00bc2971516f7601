#!/usr/bin/env python3
"""
Task Registry for Report Courier
Admits one worker per filename and tracks in-flight work

Each admitted filename maps to a Future that the worker thread resolves
exactly once with its WorkerResult. A done-callback on that Future
removes the filename under the same lock used for admission, so a file
re-offered on the next scan while still in work is ignored, and a file
offered after its worker finished is admitted again.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Callable, Dict, List, Optional

from courier.file_worker import FileWorker, WorkerResult, WorkerState

logger = logging.getLogger(__name__)


class TaskRegistry:
    """
    Dispatcher for per-file workers.

    The registry never looks at file content and the workers never look
    at the registry; the only coordination is the completion Future.

    Example:
        >>> registry = TaskRegistry(lambda name: FileWorker(name, context))
        >>> registry.admit('report.xml')
        True
        >>> registry.admit('report.xml')  # still in work
        False

    Attributes:
        worker_factory (Callable): Builds a FileWorker for a filename
        events: Event sink (CloudWatchManager) or None
    """

    def __init__(self, worker_factory: Callable[[str], FileWorker], events=None):
        self.worker_factory = worker_factory
        self.events = events
        self._lock = threading.Lock()
        self._released = threading.Condition(self._lock)
        self._tasks: Dict[str, Future] = {}
        self._dir_listing: List = []

    def admit(self, name: str) -> bool:
        """
        Start a worker for name unless one is already tracked.

        Returns immediately; never waits on worker progress.

        Returns:
            bool: True if a new worker was started, False if already tracked

        Raises:
            Exception: Whatever building or starting the worker raised; the
                filename is untracked again before it propagates
        """
        with self._lock:
            if name in self._tasks:
                return False

            done_signal = Future()
            self._tasks[name] = done_signal

        # Registered before the worker starts, so the callback always runs
        # on the worker thread and never under this thread's lock.
        done_signal.add_done_callback(lambda f: self._release(name, f))

        try:
            worker = self.worker_factory(name)
            thread = threading.Thread(
                target=self._run_worker,
                args=(worker, done_signal),
                name=f"worker-{name}",
                daemon=True,
            )
            thread.start()
        except Exception as e:
            # No worker owns the entry, so nothing would ever release it
            with self._released:
                if self._tasks.get(name) is done_signal:
                    del self._tasks[name]
                self._released.notify_all()
            logger.error(f"[FILE: {name}] Failed to start worker: {e}")
            raise

        if self.events is not None:
            self.events.record_task_admitted()
        logger.info(f"Admitted new file {name}")
        return True

    def _run_worker(self, worker: FileWorker, done_signal: Future):
        try:
            result = worker.run()
        except Exception as e:
            logger.exception(f"[FILE: {worker.name}] Worker crashed: {e}")
            result = WorkerResult(
                name=worker.name, success=False, state=worker.state, error=str(e)
            )
        done_signal.set_result(result)

    def _release(self, name: str, done_signal: Future):
        with self._released:
            if self._tasks.get(name) is done_signal:
                del self._tasks[name]
            self._released.notify_all()

        result = done_signal.result()
        if result.success:
            logger.info(f"[FILE: {name}] Finished processing")
        else:
            logger.warning(
                f"[FILE: {name}] Released after failure in state "
                f"{result.state.value}: {result.error}"
            )

    def is_tracked(self, name: str) -> bool:
        with self._lock:
            return name in self._tasks

    def files_in_work(self) -> List[str]:
        """Filenames currently owned by a worker."""
        with self._lock:
            return list(self._tasks)

    def size(self) -> int:
        with self._lock:
            return len(self._tasks)

    def set_directory_listing(self, entries: List):
        """Replace the last directory snapshot wholesale."""
        with self._lock:
            self._dir_listing = list(entries)

    def files_in_dir(self) -> List[str]:
        with self._lock:
            return [entry.name for entry in self._dir_listing]

    def snapshot(self) -> Dict[str, List[str]]:
        """
        Status view for the HTTP endpoint.

        Returns:
            dict: {'dir_files': [...], 'working_files': [...]}
        """
        with self._lock:
            return {
                "dir_files": [entry.name for entry in self._dir_listing],
                "working_files": list(self._tasks),
            }

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the workers in flight right now to finish.

        Returns:
            bool: True if all of them finished within timeout
        """
        with self._released:
            pending = dict(self._tasks)
            return self._released.wait_for(
                lambda: all(self._tasks.get(name) is not f for name, f in pending.items()),
                timeout=timeout,
            )
