import logging
from typing import Dict, Optional, Set

from core.operation_queue import Operation, OperationQueue

logger = logging.getLogger(__name__)


class PendingOperations:
    """
    Admission control and bookkeeping for per-row background work.

    Owns a download queue and a filtration queue, each strictly serial, and
    remembers which operation is in flight for which row.  The two maps are
    touched only from the UI thread; worker threads report completion through
    a marshalled callback, so no lock guards them.
    """

    def __init__(self):
        # One worker per phase: work within a phase runs one at a time, in submission order.
        self.downloads_in_progress: Dict[int, Operation] = {}
        self.download_queue = OperationQueue("Download queue", max_concurrent=1)

        self.filtrations_in_progress: Dict[int, Operation] = {}
        self.filtration_queue = OperationQueue("Image Filtration queue", max_concurrent=1)

        self.download_queue.start()
        self.filtration_queue.start()

    def submit_download(self, row: int, operation: Operation) -> bool:
        return self._submit(row, operation, self.downloads_in_progress, self.download_queue)

    def submit_filtration(self, row: int, operation: Operation) -> bool:
        return self._submit(row, operation, self.filtrations_in_progress, self.filtration_queue)

    def _submit(self, row: int, operation: Operation, in_progress: Dict[int, Operation],
                queue: OperationQueue) -> bool:
        if row in in_progress:
            logger.debug(f"Row {row} already has '{in_progress[row].name}' in flight. Ignoring '{operation.name}'.")
            return False
        if not queue.add_operation(operation):
            return False
        in_progress[row] = operation
        return True

    def cancel_and_remove(self, row: int) -> bool:
        """Cancel any work for ``row`` and forget it now, without waiting for the worker."""
        cancelled = False
        for in_progress in (self.downloads_in_progress, self.filtrations_in_progress):
            operation = in_progress.pop(row, None)
            if operation is not None:
                operation.cancel()
                cancelled = True
                logger.debug(f"Cancelled '{operation.name}' for row {row}.")
        return cancelled

    def remove_finished(self, row: int, operation: Operation) -> bool:
        """Drop bookkeeping for ``operation`` unless a newer one has replaced it."""
        for in_progress in (self.downloads_in_progress, self.filtrations_in_progress):
            if in_progress.get(row) is operation:
                del in_progress[row]
                return True
        return False

    def download_for_row(self, row: int) -> Optional[Operation]:
        return self.downloads_in_progress.get(row)

    def filtration_for_row(self, row: int) -> Optional[Operation]:
        return self.filtrations_in_progress.get(row)

    def rows_in_progress(self) -> Set[int]:
        return set(self.downloads_in_progress) | set(self.filtrations_in_progress)

    def suspend_all(self):
        self.download_queue.suspend()
        self.filtration_queue.suspend()

    def resume_all(self):
        self.download_queue.resume()
        self.filtration_queue.resume()

    @property
    def is_suspended(self) -> bool:
        return self.download_queue.is_suspended and self.filtration_queue.is_suspended

    def shutdown(self, timeout: float = 5.0):
        for row in list(self.rows_in_progress()):
            self.cancel_and_remove(row)
        self.download_queue.shutdown(timeout)
        self.filtration_queue.shutdown(timeout)
