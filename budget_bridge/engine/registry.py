"""Detector registry for special-transaction detection.

Detectors are registered by name and run in registration order, so the links attached
to a transaction always come out in the same order.
"""

from typing import ClassVar

from budget_bridge.engine.base import BaseDetector


class DetectorRegistry:
    """Registry for detector classes."""

    _registry: ClassVar[dict[str, type[BaseDetector]]] = {}

    @classmethod
    def register(cls, name: str, detector_cls: type[BaseDetector]) -> None:
        """Register a detector class with a given name."""
        cls._registry[name] = detector_cls

    @classmethod
    def available(cls) -> list[str]:
        """List all available detector names."""
        return list(cls._registry.keys())

    @classmethod
    def instances(cls) -> list[BaseDetector]:
        """Instantiate every registered detector, in registration order."""
        return [detector_cls() for detector_cls in cls._registry.values()]
