"""
Shared pytest fixtures for Classic Photos tests.
"""
import io
import os
import socket
import sys
import threading
import time

# Ensure project root is on path for all tests
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Widgets are created in some tests; no display is available in CI.
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest
from PIL import Image
from PySide6.QtCore import QCoreApplication
from PySide6.QtWidgets import QApplication


class MockConfigManager:
    """Minimal ConfigManager substitute that accepts a plain dict."""

    def __init__(self, overrides: dict | None = None):
        self._cfg: dict = {
            "manifest_url": "file:///nonexistent/manifest.plist",
            "network": {"download_timeout": 2.0, "manifest_timeout": 2.0},
            "filter": {"sepia_intensity": 0.8},
            "gui": {"thumbnail_size": 32, "settle_delay_ms": 10,
                    "window_width": 300, "window_height": 200},
        }
        if overrides:
            self._cfg.update(overrides)

    def get(self, key: str, default=None):
        keys = key.split(".")
        val = self._cfg
        for k in keys:
            if isinstance(val, dict):
                val = val.get(k)
            else:
                return default
        return val if val is not None else default


def process_events_until(predicate, timeout=3.0, interval=0.01):
    """Pump the Qt event loop until ``predicate()`` is truthy or ``timeout`` passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        QCoreApplication.processEvents()
        result = predicate()
        if result:
            return result
        time.sleep(interval)
    QCoreApplication.processEvents()
    return predicate()


class RawResponseServer:
    """Loopback TCP server that answers every request with the same raw bytes."""

    def __init__(self, response: bytes):
        self.response = response
        self.hits = 0
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(16)
        self._sock.settimeout(0.1)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def url(self, path: str = "/photo.jpg") -> str:
        return f"http://127.0.0.1:{self._sock.getsockname()[1]}{path}"

    def _serve(self):
        while not self._stop.is_set():
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            with conn:
                conn.settimeout(1.0)
                request = b""
                try:
                    while b"\r\n\r\n" not in request:
                        chunk = conn.recv(4096)
                        if not chunk:
                            break
                        request += chunk
                    self.hits += 1
                    conn.sendall(self.response)
                except OSError:
                    continue

    def close(self):
        self._stop.set()
        self._thread.join(1.0)
        self._sock.close()


@pytest.fixture()
def raw_http_server():
    """Factory for RawResponseServer instances, closed after the test."""
    servers = []

    def start(response: bytes) -> RawResponseServer:
        server = RawResponseServer(response)
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.close()


TRUNCATED_BODY = b"HTTP/1.0 200 OK\r\nContent-Type: image/jpeg\r\nContent-Length: 100\r\n\r\nabc"
BAD_STATUS_LINE = b"GARBAGE NOT HTTP\r\n\r\n"


def make_image_bytes(color=(200, 120, 40), size=(16, 12), fmt="PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, fmt)
    return buffer.getvalue()


@pytest.fixture(scope="session")
def qapp():
    app = QApplication.instance() or QApplication([])
    yield app


@pytest.fixture()
def image_bytes():
    return make_image_bytes()


@pytest.fixture()
def photo_dir(tmp_path):
    """Four small photos on disk; returns their file:// URLs in order."""
    img_dir = tmp_path / "photos"
    img_dir.mkdir()
    urls = []
    for i in range(4):
        path = img_dir / f"photo_{i}.jpg"
        Image.new("RGB", (40, 30), color=(i * 50, 100, 200 - i * 40)).save(str(path), "JPEG")
        urls.append(path.as_uri())
    return urls
