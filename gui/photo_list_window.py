import logging
from typing import List

from PySide6.QtCore import QSize, QTimer
from PySide6.QtWidgets import QListView, QMainWindow

from core.list_coordinator import ListCoordinator
from gui.photo_list_model import PhotoListModel


class PhotoListWindow(QMainWindow):
    """
    Scrolling photo list.  Translates scroll-bar and wheel activity into the
    coordinator's drag / settle events and answers its visible-row queries.

    Pressing the scroll-bar slider is a drag; releasing it ends the drag with
    no momentum.  Wheel and keyboard scrolling behave like a flick: work is
    suspended until the list has been still for ``gui.settle_delay_ms``.
    """

    def __init__(self, config_manager, coordinator: ListCoordinator, parent=None):
        super().__init__(parent)
        self.coordinator = coordinator
        thumbnail_size = config_manager.get("gui.thumbnail_size", 64)

        self.setWindowTitle("Classic Photos")
        self.resize(config_manager.get("gui.window_width", 480), config_manager.get("gui.window_height", 640))

        self.model = PhotoListModel(coordinator, thumbnail_size=thumbnail_size, parent=self)
        self.list_view = QListView(self)
        self.list_view.setModel(self.model)
        self.list_view.setIconSize(QSize(thumbnail_size, thumbnail_size))
        self.list_view.setUniformItemSizes(True)
        self.setCentralWidget(self.list_view)

        self._settle_timer = QTimer(self)
        self._settle_timer.setSingleShot(True)
        self._settle_timer.setInterval(config_manager.get("gui.settle_delay_ms", 150))
        self._settle_timer.timeout.connect(self._on_settle_timeout)

        scroll_bar = self.list_view.verticalScrollBar()
        scroll_bar.sliderPressed.connect(self._on_slider_pressed)
        scroll_bar.sliderReleased.connect(self._on_slider_released)
        scroll_bar.valueChanged.connect(self._on_scroll)

        coordinator.set_visible_rows_provider(self.visible_rows)
        coordinator.photosLoaded.connect(self._on_photos_loaded)
        coordinator.photosLoadFailed.connect(self._on_photos_load_failed)
        self.statusBar().showMessage("Loading photo list…")

    def visible_rows(self) -> List[int]:
        """Rows intersecting the viewport, top to bottom."""
        count = self.model.rowCount()
        if count == 0:
            return []
        rect = self.list_view.viewport().rect()
        top = self.list_view.indexAt(rect.topLeft())
        if not top.isValid():
            return []
        bottom = self.list_view.indexAt(rect.bottomLeft())
        last = bottom.row() if bottom.isValid() else count - 1
        return list(range(top.row(), last + 1))

    def _on_slider_pressed(self):
        self._settle_timer.stop()
        self.coordinator.drag_started()

    def _on_slider_released(self):
        self.coordinator.drag_ended(will_decelerate=False)

    def _on_scroll(self, value: int):
        if self.list_view.verticalScrollBar().isSliderDown():
            return
        if not self.coordinator.is_scrolling:
            self.coordinator.drag_started()
            self.coordinator.drag_ended(will_decelerate=True)
        self._settle_timer.start()

    def _on_settle_timeout(self):
        self.coordinator.deceleration_ended()

    def _on_photos_loaded(self, count: int):
        self.statusBar().showMessage(f"{count} photos", 3000)
        # Layout of the new rows is posted; reconcile once it has happened.
        self._settle_timer.start()

    def _on_photos_load_failed(self, message: str):
        logging.error(f"Photo list unavailable: {message}")
        self.statusBar().showMessage(f"Oops! {message}")

    def resizeEvent(self, event):
        super().resizeEvent(event)
        if self.coordinator.row_count():
            self._settle_timer.start()
