"""Exceptions raised by the assistant process bridge."""

from __future__ import annotations


class BridgeError(RuntimeError):
    """Base error raised for bridge failures."""


class SpawnError(BridgeError):
    """Raised when the assistant CLI cannot be located or started."""


class ProcessTimeoutError(BridgeError):
    """Raised when a session exceeds its wall-clock budget."""


class ImageStagingError(BridgeError):
    """Raised when an inline image cannot be decoded or written."""


__all__ = [
    "BridgeError",
    "ImageStagingError",
    "ProcessTimeoutError",
    "SpawnError",
]
