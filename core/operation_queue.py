import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from queue import Empty, Queue
from typing import Callable, Iterator, List, Optional

logger = logging.getLogger(__name__)

_SHUTDOWN = object()


class Operation(ABC):
    """A unit of cancellable background work.

    Cancellation is cooperative: ``cancel()`` sets a ``threading.Event`` that
    ``main()`` polls at its checkpoints.  The final checkpoint and the commit
    of results happen inside ``committing()``, which shares a lock with
    ``cancel()``; once ``cancel()`` has returned, nothing will be committed.
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name or self.__class__.__name__
        self.completion_callback: Optional[Callable[['Operation'], None]] = None
        self._cancel_event = threading.Event()
        self._commit_lock = threading.Lock()
        self._finished = threading.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def is_finished(self) -> bool:
        return self._finished.is_set()

    def cancel(self) -> None:
        with self._commit_lock:
            self._cancel_event.set()

    @contextmanager
    def committing(self) -> Iterator[bool]:
        """Yield True if results may be committed; cancel() waits meanwhile."""
        with self._commit_lock:
            yield not self._cancel_event.is_set()

    def start(self) -> None:
        """Run the operation on the calling thread, then fire the completion callback.

        The callback fires exactly once, unless the operation was cancelled:
        whoever cancelled it already dropped their bookkeeping.
        """
        try:
            if not self.is_cancelled:
                self.main()
        except Exception as e:  # why: operation bodies must not kill the worker; completion still clears bookkeeping
            logger.error(f"Operation '{self.name}' raised: {e}", exc_info=True)
        finally:
            self._finished.set()

        if self.is_cancelled:
            logger.debug(f"Operation '{self.name}' was cancelled; completion suppressed.")
            return
        if self.completion_callback:
            try:
                self.completion_callback(self)
            except Exception as e:  # why: callbacks are caller-supplied; must not propagate into the worker
                logger.error(f"Completion callback for '{self.name}' failed: {e}", exc_info=True)

    @abstractmethod
    def main(self) -> None:
        """Perform the work.  Poll ``is_cancelled`` at each checkpoint."""


class OperationQueue:
    """
    A FIFO of operations drained by a fixed number of worker threads.

    With ``max_concurrent=1`` the queue is strictly serial: operations run one
    at a time in submission order.  ``suspend()`` stops workers from dequeuing
    new operations; operations already running are unaffected.
    """

    def __init__(self, name: str, max_concurrent: int = 1):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.name = name
        self.max_concurrent = max_concurrent
        self._queue: Queue = Queue()
        self._worker_threads: List[threading.Thread] = []
        self._running = False
        self._shutting_down = threading.Event()
        self._resumed = threading.Event()
        self._resumed.set()

        self._count_lock = threading.Lock()
        self._all_done = threading.Condition(self._count_lock)
        self._operation_count = 0

    def start(self):
        if self._running:
            return
        logger.info(f"OperationQueue '{self.name}': starting with {self.max_concurrent} worker(s).")
        self._running = True
        for i in range(self.max_concurrent):
            worker = threading.Thread(target=self._worker_loop, args=(i,), daemon=True)
            worker.name = f"{self.name}-{i}"
            self._worker_threads.append(worker)
            worker.start()

    @property
    def operation_count(self) -> int:
        """Operations queued or running."""
        with self._count_lock:
            return self._operation_count

    @property
    def is_suspended(self) -> bool:
        return not self._resumed.is_set()

    def suspend(self):
        if not self.is_suspended:
            logger.debug(f"OperationQueue '{self.name}': suspended.")
        self._resumed.clear()

    def resume(self):
        if self.is_suspended:
            logger.debug(f"OperationQueue '{self.name}': resumed.")
        self._resumed.set()

    def add_operation(self, operation: Operation) -> bool:
        if self._shutting_down.is_set():
            logger.warning(f"OperationQueue '{self.name}' shutting down. Rejecting '{operation.name}'.")
            return False
        with self._count_lock:
            self._operation_count += 1
        self._queue.put(operation)
        return True

    def wait_until_all_operations_are_finished(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is queued or running.  Never returns True while suspended with work queued."""
        with self._all_done:
            return self._all_done.wait_for(lambda: self._operation_count == 0, timeout)

    def _operation_done(self):
        with self._all_done:
            self._operation_count -= 1
            if self._operation_count == 0:
                self._all_done.notify_all()

    def _worker_loop(self, worker_id: int):
        thread_name = threading.current_thread().name
        logger.debug(f"OperationQueue: worker {worker_id} ({thread_name}) started.")
        while self._running:
            if not self._resumed.wait(timeout=0.2):
                continue
            try:
                operation = self._queue.get(timeout=0.2)
            except Empty:
                continue

            if operation is _SHUTDOWN:
                logger.debug(f"OperationQueue: worker {worker_id} ({thread_name}) received shutdown sentinel.")
                break

            try:
                # Suspension may have started between the gate and the dequeue.
                while not self._resumed.is_set() and not self._shutting_down.is_set():
                    self._resumed.wait(timeout=0.2)
                if self._shutting_down.is_set():
                    operation.cancel()
                logger.debug(f"Worker {thread_name} executing '{operation.name}'.")
                operation.start()
            except Exception as e:  # why: worker loop guard; unexpected exceptions must not kill the thread
                logger.error(f"OperationQueue: worker {worker_id} ({thread_name}) error: {e}", exc_info=True)
            finally:
                self._operation_done()

    def shutdown(self, timeout: float = 5.0):
        """
        Discard queued operations, let running ones finish, and stop the
        workers.  Blocking; idempotent.
        """
        if not self._running and not self._worker_threads:
            logger.debug(f"OperationQueue '{self.name}': already shut down.")
            return

        logger.info(f"OperationQueue '{self.name}': shutting down.")
        self._shutting_down.set()

        discarded_count = 0
        while True:
            try:
                operation = self._queue.get_nowait()
            except Empty:
                break
            if operation is _SHUTDOWN:
                continue
            operation.cancel()
            self._operation_done()
            discarded_count += 1
        if discarded_count:
            logger.info(f"OperationQueue '{self.name}': discarded {discarded_count} queued operation(s).")

        self._running = False
        self._resumed.set()
        for _ in self._worker_threads:
            self._queue.put(_SHUTDOWN)

        for i, worker in enumerate(self._worker_threads):
            worker.join(timeout)
            if worker.is_alive():
                logger.warning(f"OperationQueue '{self.name}': worker {i} did not stop within timeout.")
        self._worker_threads.clear()
        logger.info(f"OperationQueue '{self.name}': shutdown complete.")
