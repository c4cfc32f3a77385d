"""
ImageRef - Engine Lifecycle

Process-wide one-time setup of the imaging stack: OpenCV threading,
Pillow's decompression-bomb limit and the package log level. Loaders call
startup_if_needed() so explicit startup is optional.
"""

import logging
import threading
from typing import Optional

import cv2
from PIL import Image

from .config import EngineSettings

logger = logging.getLogger("imageref")

_lock = threading.Lock()
_started = False
_settings: Optional[EngineSettings] = None


def startup(settings: Optional[EngineSettings] = None) -> None:
    """
    Start the engine. A second call while running only logs a warning.

    Args:
        settings: Overrides for the EngineConfig defaults
    """
    global _started, _settings
    with _lock:
        if _started:
            logger.warning("[Engine] startup called while already running, ignored")
            return
        settings = settings or EngineSettings()
        cv2.setNumThreads(settings.concurrency)
        Image.MAX_IMAGE_PIXELS = settings.max_image_pixels
        logger.setLevel(settings.log_level)
        _settings = settings
        _started = True
    logger.info(
        "[Engine] started (concurrency=%s, max pixels=%s)",
        settings.concurrency or "auto", settings.max_image_pixels,
    )


def startup_if_needed() -> None:
    if not _started:
        startup()


def shutdown() -> None:
    """Stop the engine; the next loader call starts it again."""
    global _started, _settings
    with _lock:
        if not _started:
            return
        _started = False
        _settings = None
    logger.info("[Engine] shut down")


def is_started() -> bool:
    return _started


def settings() -> Optional[EngineSettings]:
    return _settings


def logging_settings(handler: Optional[logging.Handler] = None, level: Optional[int] = None) -> None:
    """
    Route package log output.

    Args:
        handler: Handler attached to the "imageref" logger (replaces the
            previously attached one)
        level: Minimum level for the package logger
    """
    root = logging.getLogger("imageref")
    if handler is not None:
        for existing in list(root.handlers):
            root.removeHandler(existing)
        root.addHandler(handler)
    if level is not None:
        root.setLevel(level)
