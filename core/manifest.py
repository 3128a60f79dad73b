import json
import logging
import plistlib
from typing import Iterable, List, Tuple
from urllib.parse import urlparse
from xml.parsers.expat import ExpatError

from core.errors import FetchError, ManifestError
from core.photo_operations import fetch_url_bytes
from core.photo_record import PhotoRecord

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_URL = "http://www.raywenderlich.com/downloads/ClassicPhotosDictionary.plist"
_REMOTE_SCHEMES = {"http", "https"}


def _is_usable_url(url, allow_file_urls: bool) -> bool:
    if not isinstance(url, str) or not url:
        return False
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return allow_file_urls
    return parsed.scheme in _REMOTE_SCHEMES and bool(parsed.netloc)


def _entries_from_document(document) -> Iterable[Tuple[object, object]]:
    if isinstance(document, dict):
        return document.items()
    if isinstance(document, list):
        entries = []
        for item in document:
            if not isinstance(item, dict):
                raise ManifestError(f"Manifest list entries must be objects, got {type(item).__name__}")
            entries.append((item.get("name"), item.get("url")))
        return entries
    raise ManifestError(f"Unsupported manifest document: {type(document).__name__}")


def parse_manifest(data: bytes, allow_file_urls: bool = False) -> List[PhotoRecord]:
    """
    Turn a manifest document into photo records, keeping document order.

    Accepts a property list (XML or binary) or JSON mapping names to URLs, or
    a JSON list of ``{"name": ..., "url": ...}`` objects.  ``file:`` photo
    URLs are only honoured when ``allow_file_urls`` is set, i.e. when the
    manifest itself was read from the local filesystem.
    """
    if not data:
        raise ManifestError("Manifest is empty")

    stripped = data.lstrip()
    try:
        if stripped[:1] in (b"{", b"["):
            document = json.loads(data)
        else:
            document = plistlib.loads(data)
    except (ValueError, ExpatError) as e:
        raise ManifestError(f"Malformed manifest: {e}") from e
    except Exception as e:  # why: plistlib surfaces bad <date> and similar values as assorted internal errors
        raise ManifestError(f"Malformed manifest: {e!r}") from e

    records: List[PhotoRecord] = []
    for name, url in _entries_from_document(document):
        if not _is_usable_url(url, allow_file_urls):
            logger.warning(f"Skipping manifest entry {name!r}: unusable URL {url!r}")
            continue
        records.append(PhotoRecord(name=str(name), url=url))
    logger.info(f"Manifest parsed: {len(records)} photo(s).")
    return records


def fetch_manifest(url: str, timeout: float = 30.0, fetch=fetch_url_bytes) -> List[PhotoRecord]:
    try:
        data = fetch(url, timeout)
    except FetchError as e:
        raise ManifestError(str(e)) from e
    return parse_manifest(data, allow_file_urls=urlparse(url).scheme == "file")
