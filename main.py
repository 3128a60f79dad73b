import argparse
import logging
import os
import sys

from PySide6.QtCore import QTimer
from PySide6.QtWidgets import QApplication

from config.config_manager import ConfigManager
from core.list_coordinator import ListCoordinator
from core.pending_operations import PendingOperations
from gui.photo_list_window import PhotoListWindow


def setup_logging(log_level, log_dir="~/.classicphotos"):
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    log_dir = os.path.expanduser(log_dir)
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "classicphotos.log")
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=[
            logging.FileHandler(log_path, mode="a"),
            logging.StreamHandler(sys.stdout)
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Classic Photos: a lazily loaded, sepia-filtered photo list.")
    parser.add_argument('--manifest-url', default=None,
                        help='Photo manifest to load (property list or JSON). Defaults to the configured URL.')
    parser.add_argument('--config', default=None, help='Path to the YAML config file.')
    parser.add_argument('--log-level', default=None, help='Override the configured logging level.')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    config_manager = ConfigManager(args.config)
    setup_logging(args.log_level or config_manager.logging_level,
                  config_manager.get("log_dir", "~/.classicphotos"))
    logging.info("Starting Classic Photos")

    app = QApplication(sys.argv[:1])
    app.setApplicationName("Classic Photos")

    pending_operations = PendingOperations()
    coordinator = ListCoordinator.from_config(config_manager, pending_operations)
    window = PhotoListWindow(config_manager, coordinator)

    app.aboutToQuit.connect(coordinator.shutdown)

    window.show()
    QTimer.singleShot(0, lambda: coordinator.load_photos(args.manifest_url))

    exit_code = app.exec()
    logging.info(f"Application exiting with code {exit_code}.")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
