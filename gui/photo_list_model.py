from typing import Dict, Optional, Tuple

from PySide6.QtCore import QAbstractListModel, QModelIndex, QObject, Qt
from PySide6.QtGui import QColor, QImage

from core.list_coordinator import ListCoordinator


class PhotoListModel(QAbstractListModel):
    """List model over a ListCoordinator's rows.

    Redraws are incremental: a ``rowChanged`` from the coordinator becomes a
    ``dataChanged`` for exactly that row.
    """

    BusyRole = Qt.UserRole + 1
    FailedRole = Qt.UserRole + 2

    _BUSY_COLOR = QColor("#757575")
    _FAILED_COLOR = QColor("#b71c1c")

    def __init__(self, coordinator: ListCoordinator, thumbnail_size: int = 64,
                 parent: Optional[QObject] = None):
        super().__init__(parent)
        self._coordinator = coordinator
        self._thumbnail_size = thumbnail_size
        # row -> (source bytes, decoded image); bytes compared by identity
        self._image_cache: Dict[int, Tuple[bytes, QImage]] = {}
        self._resetting = False

        coordinator.rowChanged.connect(self._on_row_changed)
        coordinator.photosAboutToChange.connect(self._on_photos_about_to_change)
        coordinator.photosLoaded.connect(self._on_photos_loaded)

    def rowCount(self, parent: QModelIndex = QModelIndex()) -> int:
        if parent.isValid():
            return 0
        return self._coordinator.row_count()

    def data(self, index: QModelIndex, role: int = Qt.DisplayRole):
        if not index.isValid() or not 0 <= index.row() < self._coordinator.row_count():
            return None
        row = index.row()
        render = self._coordinator.render_row(row)

        if role == Qt.DisplayRole:
            return render.title
        if role == Qt.DecorationRole:
            return self._decoration(row, render.image)
        if role == Qt.ToolTipRole:
            return self._coordinator.photos[row].url
        if role == Qt.ForegroundRole:
            if render.failed:
                return self._FAILED_COLOR
            if render.is_busy:
                return self._BUSY_COLOR
            return None
        if role == self.BusyRole:
            return render.is_busy
        if role == self.FailedRole:
            return render.failed
        return None

    def _decoration(self, row: int, image_bytes: bytes) -> QImage:
        cached = self._image_cache.get(row)
        if cached is not None and cached[0] is image_bytes:
            return cached[1]
        image = QImage.fromData(image_bytes)
        if not image.isNull():
            image = image.scaled(self._thumbnail_size, self._thumbnail_size,
                                 Qt.KeepAspectRatio, Qt.SmoothTransformation)
        self._image_cache[row] = (image_bytes, image)
        return image

    def _on_row_changed(self, row: int):
        if not 0 <= row < self.rowCount():
            return
        self._image_cache.pop(row, None)
        index = self.index(row, 0)
        self.dataChanged.emit(index, index)

    def _on_photos_about_to_change(self):
        if self._resetting:
            return
        self._resetting = True
        self.beginResetModel()

    def _on_photos_loaded(self, count: int):
        if not self._resetting:
            return
        self._image_cache.clear()
        self._resetting = False
        self.endResetModel()
