"""Lazy imports for optional hardware dependencies."""

from __future__ import annotations

from typing import Any


def import_sounddevice() -> Any:
    """Import sounddevice, raising a clear error if missing."""
    try:
        import sounddevice as _sd

        return _sd
    except ImportError as exc:
        raise ImportError(
            "sounddevice is required for microphone capture and speaker playback. "
            "Install it with: pip install livesight[local-audio]"
        ) from exc


def import_cv2() -> Any:
    """Import OpenCV, raising a clear error if missing."""
    try:
        import cv2 as _cv2

        return _cv2
    except ImportError as exc:
        raise ImportError(
            "opencv-python is required for camera capture. "
            "Install it with: pip install livesight[camera]"
        ) from exc
