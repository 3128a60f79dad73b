# core/photo_record.py
"""Qt-free photo record, its state machine, and the per-row render tuple."""
import io
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from functools import lru_cache
from typing import Dict, FrozenSet, NamedTuple

from PIL import Image, ImageDraw

FAILED_TITLE = "Failed to load"
_PLACEHOLDER_SIZE = 64


class PhotoState(IntEnum):
    NEW = 1
    DOWNLOADED = 2
    FILTERED = 3
    FAILED = 4


_LEGAL_TRANSITIONS: Dict[PhotoState, FrozenSet[PhotoState]] = {
    PhotoState.NEW: frozenset({PhotoState.DOWNLOADED, PhotoState.FAILED}),
    PhotoState.DOWNLOADED: frozenset({PhotoState.DOWNLOADED, PhotoState.FILTERED}),
    PhotoState.FILTERED: frozenset(),
    PhotoState.FAILED: frozenset(),
}


def _render_png(fill: str, cross: bool) -> bytes:
    img = Image.new("RGB", (_PLACEHOLDER_SIZE, _PLACEHOLDER_SIZE), color=fill)
    if cross:
        draw = ImageDraw.Draw(img)
        edge = _PLACEHOLDER_SIZE - 1
        draw.line((0, 0, edge, edge), fill="white", width=3)
        draw.line((0, edge, edge, 0), fill="white", width=3)
    buffer = io.BytesIO()
    img.save(buffer, "PNG")
    return buffer.getvalue()


@lru_cache(maxsize=None)
def placeholder_image() -> bytes:
    """PNG shown while a photo has not been downloaded yet."""
    return _render_png("#9e9e9e", cross=False)


@lru_cache(maxsize=None)
def failed_image() -> bytes:
    """PNG shown for a photo whose download or decode failed."""
    return _render_png("#b71c1c", cross=True)


class RowRender(NamedTuple):
    title: str
    image: bytes
    is_busy: bool
    failed: bool


@dataclass(eq=False)
class PhotoRecord:
    """One remote photo and its processing state.

    Identity is the row the record occupies in its list, so records compare
    by identity rather than content.  ``state`` and ``image`` are written only
    by the operation that currently owns the record.
    """
    name: str
    url: str
    state: PhotoState = PhotoState.NEW
    image: bytes = field(default_factory=placeholder_image, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _check_transition(self, new_state: PhotoState) -> None:
        if new_state not in _LEGAL_TRANSITIONS[self.state]:
            raise ValueError(
                f"Illegal transition for '{self.name}': {self.state.name} -> {new_state.name}"
            )

    def render(self) -> RowRender:
        with self._lock:
            state, image = self.state, self.image
        failed = state == PhotoState.FAILED
        return RowRender(
            title=FAILED_TITLE if failed else self.name,
            image=image,
            is_busy=state in (PhotoState.NEW, PhotoState.DOWNLOADED),
            failed=failed,
        )

    def commit(self, new_state: PhotoState, image: bytes) -> None:
        """Assign ``image`` and move to ``new_state`` as one step."""
        with self._lock:
            self._check_transition(new_state)
            self.image = image
            self.state = new_state
