"""Background operations that download and filter a single photo.

Both run on ``OperationQueue`` worker threads.  Errors never leave ``main()``:
they become ``PhotoState`` transitions on the record.
"""
import http.client
import io
import logging
import urllib.error
import urllib.request
from functools import partial
from typing import Callable, Optional

from PIL import Image

from core.errors import DecodeError, FetchError, FilterError
from core.operation_queue import Operation
from core.photo_record import PhotoRecord, PhotoState, failed_image

logger = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_TIMEOUT = 15.0
DEFAULT_SEPIA_INTENSITY = 0.8

# Classic sepia colour matrix (R, G, B, offset per output channel).
_SEPIA_MATRIX = (
    0.393, 0.769, 0.189, 0,
    0.349, 0.686, 0.168, 0,
    0.272, 0.534, 0.131, 0,
)

Fetcher = Callable[[str, float], bytes]
ImageFilter = Callable[[Image.Image], Image.Image]


def fetch_url_bytes(url: str, timeout: float = DEFAULT_DOWNLOAD_TIMEOUT) -> bytes:
    """Blocking GET of ``url``.  Raises FetchError on any failure or non-2xx status."""
    try:
        with urllib.request.urlopen(urllib.request.Request(url), timeout=timeout) as resp:
            status = getattr(resp, "status", None)
            if status is not None and not 200 <= status < 300:
                raise FetchError(f"HTTP {status} for {url}")
            return resp.read()
    except urllib.error.URLError as e:
        raise FetchError(f"Network error for {url}: {e}") from e
    except http.client.HTTPException as e:
        raise FetchError(f"Malformed response for {url}: {e!r}") from e
    except (OSError, ValueError) as e:
        raise FetchError(f"Could not fetch {url}: {e}") from e


def decode_image(data: bytes) -> Image.Image:
    if not data:
        raise DecodeError("empty payload")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        return img
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"not a decodable image: {e}") from e


def encode_png(img: Image.Image) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, "PNG")
    return buffer.getvalue()


def sepia_tone(img: Image.Image, intensity: float = DEFAULT_SEPIA_INTENSITY) -> Image.Image:
    """Blend ``img`` with its sepia-toned version; ``intensity`` 0 keeps the original."""
    if img.mode != "RGB":
        img = img.convert("RGB")
    sepia = img.convert("RGB", _SEPIA_MATRIX)
    return Image.blend(img, sepia, max(0.0, min(1.0, intensity)))


class PhotoOperation(Operation):
    def __init__(self, photo_record: PhotoRecord, row: int):
        super().__init__(name=f"{self.__class__.__name__}[{row}:{photo_record.name}]")
        self.photo_record = photo_record
        self.row = row


class ImageDownloader(PhotoOperation):
    """Fetches a record's bytes and moves it to DOWNLOADED or FAILED."""

    def __init__(self, photo_record: PhotoRecord, row: int,
                 fetch: Fetcher = fetch_url_bytes,
                 timeout: float = DEFAULT_DOWNLOAD_TIMEOUT):
        super().__init__(photo_record, row)
        self._fetch = fetch
        self.timeout = timeout

    def main(self):
        if self.is_cancelled:
            return
        if self.photo_record.state != PhotoState.NEW:
            logger.debug(f"{self.name}: record is {self.photo_record.state.name}, nothing to download.")
            return

        error: Optional[Exception] = None
        payload = b""
        try:
            payload = self._fetch(self.photo_record.url, self.timeout)
        except FetchError as e:
            error = e
        except Exception as e:  # why: fetchers are pluggable; whatever they raise, the row must end up FAILED rather than NEW
            logger.error(f"{self.name}: unexpected fetch error: {e!r}", exc_info=True)
            error = e

        # The fetch may have been slow; the row may be gone by now.
        if self.is_cancelled:
            logger.debug(f"{self.name}: cancelled during fetch, discarding result.")
            return

        if error is None:
            try:
                if not payload:
                    raise FetchError(f"empty body for {self.photo_record.url}")
                decode_image(payload)
            except (FetchError, DecodeError) as e:
                error = e
            except Exception as e:  # why: Pillow plugins can raise beyond OSError/ValueError on hostile payloads
                logger.error(f"{self.name}: unexpected decode error: {e!r}", exc_info=True)
                error = e

        if error is not None:
            logger.warning(f"Download failed for '{self.photo_record.name}': {error}")
            self._commit(PhotoState.FAILED, failed_image())
        else:
            logger.debug(f"{self.name}: downloaded {len(payload)} bytes.")
            self._commit(PhotoState.DOWNLOADED, payload)

    def _commit(self, state: PhotoState, image: bytes):
        with self.committing() as allowed:
            if not allowed:
                logger.debug(f"{self.name}: cancelled before commit.")
                return
            self.photo_record.commit(state, image)


class ImageFiltration(PhotoOperation):
    """Applies the sepia filter to a DOWNLOADED record; best-effort."""

    def __init__(self, photo_record: PhotoRecord, row: int,
                 image_filter: Optional[ImageFilter] = None,
                 intensity: float = DEFAULT_SEPIA_INTENSITY):
        super().__init__(photo_record, row)
        self._image_filter = image_filter or partial(sepia_tone, intensity=intensity)

    def apply_filter(self, source: Image.Image) -> bytes:
        try:
            return encode_png(self._image_filter(source))
        except Exception as e:  # why: the filter engine is pluggable; any failure leaves the record unfiltered
            raise FilterError(f"filter failed for '{self.photo_record.name}': {e}") from e

    def main(self):
        if self.is_cancelled:
            return
        if self.photo_record.state != PhotoState.DOWNLOADED:
            return

        try:
            source = decode_image(self.photo_record.image)
        except DecodeError as e:
            logger.warning(f"{self.name}: cannot decode downloaded image: {e}")
            return

        if self.is_cancelled:
            return

        try:
            output = self.apply_filter(source)
        except FilterError as e:
            logger.warning(f"{e}. Keeping unfiltered image.")
            return

        with self.committing() as allowed:
            if not allowed:
                logger.debug(f"{self.name}: cancelled before commit.")
                return
            self.photo_record.commit(PhotoState.FILTERED, output)
        logger.debug(f"{self.name}: filtered.")
