import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Callable, Iterable, List, Optional, Set, Tuple

from PySide6.QtCore import QObject, Qt, Signal

from core.errors import ManifestError
from core.manifest import DEFAULT_MANIFEST_URL, fetch_manifest
from core.operation_queue import Operation
from core.pending_operations import PendingOperations
from core.photo_operations import ImageDownloader, ImageFiltration
from core.photo_record import PhotoRecord, PhotoState, RowRender

logger = logging.getLogger(__name__)

OperationFactory = Callable[[PhotoRecord, int], Operation]


class ListCoordinator(QObject):
    """
    Ties the rows visible in a scrolling list to background photo work.

    Lives on the UI thread.  Operations finish on worker threads and report
    back through a queued signal, so bookkeeping and redraws only ever happen
    here.  While the list is being dragged the queues are suspended; when
    scrolling settles, work for rows that left the viewport is cancelled and
    work for newly visible rows is started.
    """

    rowChanged = Signal(int)
    photosAboutToChange = Signal()
    photosLoaded = Signal(int)
    photosLoadFailed = Signal(str)

    _operationFinished = Signal(object)
    _manifestFetched = Signal(object, object)  # records or None, error message or None

    def __init__(
        self,
        pending_operations: PendingOperations,
        downloader_factory: Optional[OperationFactory] = None,
        filtration_factory: Optional[OperationFactory] = None,
        manifest_loader: Optional[Callable[[str], List[PhotoRecord]]] = None,
        manifest_url: str = DEFAULT_MANIFEST_URL,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self.pending_operations = pending_operations
        self._downloader_factory = downloader_factory or ImageDownloader
        self._filtration_factory = filtration_factory or ImageFiltration
        self._manifest_loader = manifest_loader or fetch_manifest
        self._manifest_url = manifest_url
        self._photos: List[PhotoRecord] = []
        # rows whose last operation finished without moving the record forward
        self._stalled_rows: Set[int] = set()
        self._visible_rows_provider: Optional[Callable[[], Iterable[int]]] = None
        self._dragging = False
        self._decelerating = False
        self._manifest_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="manifest")

        self._operationFinished.connect(self._on_operation_finished, Qt.QueuedConnection)
        self._manifestFetched.connect(self._on_manifest_fetched, Qt.QueuedConnection)

    @classmethod
    def from_config(cls, config_manager, pending_operations: PendingOperations,
                    parent: Optional[QObject] = None) -> 'ListCoordinator':
        download_timeout = float(config_manager.get("network.download_timeout", 15.0))
        manifest_timeout = float(config_manager.get("network.manifest_timeout", 30.0))
        intensity = float(config_manager.get("filter.sepia_intensity", 0.8))
        return cls(
            pending_operations,
            downloader_factory=partial(ImageDownloader, timeout=download_timeout),
            filtration_factory=partial(ImageFiltration, intensity=intensity),
            manifest_loader=partial(fetch_manifest, timeout=manifest_timeout),
            manifest_url=config_manager.get("manifest_url", DEFAULT_MANIFEST_URL),
            parent=parent,
        )

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    @property
    def photos(self) -> List[PhotoRecord]:
        return self._photos

    def row_count(self) -> int:
        return len(self._photos)

    def render_row(self, row: int) -> RowRender:
        return self._photos[row].render()

    def set_photos(self, records: List[PhotoRecord]) -> None:
        """Replace the whole list; work for the old list is cancelled."""
        for row in self.pending_operations.rows_in_progress():
            self.pending_operations.cancel_and_remove(row)
        self.photosAboutToChange.emit()
        self._photos = list(records)
        self._stalled_rows.clear()
        logger.info(f"ListCoordinator: {len(self._photos)} photo(s) installed.")
        self.photosLoaded.emit(len(self._photos))

    def set_visible_rows_provider(self, provider: Optional[Callable[[], Iterable[int]]]) -> None:
        self._visible_rows_provider = provider

    def visible_rows(self) -> Set[int]:
        if self._visible_rows_provider is None:
            return set()
        count = len(self._photos)
        return {row for row in self._visible_rows_provider() if 0 <= row < count}

    @property
    def is_scrolling(self) -> bool:
        return self._dragging or self._decelerating

    # ------------------------------------------------------------------
    # Starting work
    # ------------------------------------------------------------------

    def start_operations_for_row(self, row: int) -> bool:
        if row in self._stalled_rows:
            return False
        record = self._photos[row]
        if record.state == PhotoState.NEW:
            return self._start_download(record, row)
        if record.state == PhotoState.DOWNLOADED:
            return self._start_filtration(record, row)
        return False

    def _start_download(self, record: PhotoRecord, row: int) -> bool:
        if self.pending_operations.download_for_row(row) is not None:
            return False
        operation = self._downloader_factory(record, row)
        operation.completion_callback = self._operationFinished.emit
        return self.pending_operations.submit_download(row, operation)

    def _start_filtration(self, record: PhotoRecord, row: int) -> bool:
        if self.pending_operations.filtration_for_row(row) is not None:
            return False
        operation = self._filtration_factory(record, row)
        operation.completion_callback = self._operationFinished.emit
        return self.pending_operations.submit_filtration(row, operation)

    # ------------------------------------------------------------------
    # Scroll events
    # ------------------------------------------------------------------

    def drag_started(self) -> None:
        self._dragging = True
        self.pending_operations.suspend_all()

    def drag_ended(self, will_decelerate: bool) -> None:
        self._dragging = False
        if will_decelerate:
            self._decelerating = True
        else:
            self.settle()

    def deceleration_ended(self) -> None:
        self._decelerating = False
        self.settle()

    def settle(self) -> None:
        self._dragging = False
        self._decelerating = False
        self.pending_operations.resume_all()
        self.load_images_for_onscreen_rows()
        self.start_idle_visible_rows()

    def load_images_for_onscreen_rows(self) -> Tuple[Set[int], Set[int]]:
        """
        Reconcile visible rows against in-flight work.

        Rows with work in flight that are no longer visible are cancelled;
        visible rows without work in flight are started.  Returns the rows
        cancelled and the rows that actually received a new operation.
        """
        visible = self.visible_rows()
        in_progress = self.pending_operations.rows_in_progress()

        to_cancel = in_progress - visible
        to_start = visible - in_progress

        for row in sorted(to_cancel):
            self.pending_operations.cancel_and_remove(row)

        started = {row for row in sorted(to_start) if self.start_operations_for_row(row)}
        if to_cancel or started:
            logger.debug(f"Reconciled viewport: cancelled {sorted(to_cancel)}, started {sorted(started)}.")
        return to_cancel, started

    def start_idle_visible_rows(self) -> Set[int]:
        """Start work for visible rows that have nothing in flight."""
        in_progress = self.pending_operations.rows_in_progress()
        return {
            row for row in sorted(self.visible_rows())
            if row not in in_progress and self.start_operations_for_row(row)
        }

    # ------------------------------------------------------------------
    # Completions (UI thread)
    # ------------------------------------------------------------------

    def _on_operation_finished(self, operation: Operation) -> None:
        row = operation.row
        was_download = self.pending_operations.download_for_row(row) is operation
        was_filtration = self.pending_operations.filtration_for_row(row) is operation
        if not self.pending_operations.remove_finished(row, operation):
            logger.debug(f"Stale completion for '{operation.name}'.")
        if row >= len(self._photos) or self._photos[row] is not operation.photo_record:
            return

        state = operation.photo_record.state
        if (was_download and state == PhotoState.NEW) or (was_filtration and state == PhotoState.DOWNLOADED):
            # The operation gave up on this row; rescheduling it would only repeat the failure.
            logger.warning(f"'{operation.name}' finished without progress; row {row} will not be retried.")
            self._stalled_rows.add(row)

        self.rowChanged.emit(row)

        # Downloaded rows go on to filtration while they stay on screen.
        if not self.is_scrolling and row in self.visible_rows():
            self.start_operations_for_row(row)

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def load_photos(self, manifest_url: Optional[str] = None) -> None:
        url = manifest_url or self._manifest_url
        logger.info(f"ListCoordinator: loading manifest {url}")
        self._manifest_executor.submit(self._fetch_manifest, url)

    def _fetch_manifest(self, url: str) -> None:
        try:
            records = self._manifest_loader(url)
        except ManifestError as e:
            logger.error(f"Could not load manifest {url}: {e}")
            self._manifestFetched.emit(None, str(e))
            return
        except Exception as e:  # why: runs on the executor; an escaped exception would sit in an unread future and the UI would wait forever
            logger.error(f"Unexpected error loading manifest {url}: {e!r}", exc_info=True)
            self._manifestFetched.emit(None, f"Could not load photo list: {e}")
            return
        self._manifestFetched.emit(records, None)

    def _on_manifest_fetched(self, records: Optional[List[PhotoRecord]], error: Optional[str]) -> None:
        if error is not None:
            self.photosLoadFailed.emit(error)
            return
        self.set_photos(records or [])
        self.settle()

    def shutdown(self, timeout: float = 5.0) -> None:
        self._manifest_executor.shutdown(wait=False)
        self.pending_operations.shutdown(timeout)
