# nord_map/errors.py
from __future__ import annotations

"""
Error taxonomy.

Exports:
  NordMapError             base class, carries image_id and stage
  UnsupportedFormatError   input shape/depth not supported (fatal per image)
  ModelInferenceError      segmentation failed (recoverable, absorbed)
  ConfigurationError       invalid palette/options (fatal at startup)
  ResourceExhaustionError  buffer allocation failed (fatal per image)
  MappingCancelled         run cancelled before the image was started
"""

from typing import Optional


class NordMapError(Exception):
    """Base error with optional image identifier and pipeline stage."""

    def __init__(
        self,
        message: str,
        *,
        image_id: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.image_id = image_id
        self.stage = stage

    def with_context(
        self, *, image_id: Optional[str] = None, stage: Optional[str] = None
    ) -> "NordMapError":
        """Fill in missing context in place and return self for re-raise."""
        if self.image_id is None:
            self.image_id = image_id
        if self.stage is None:
            self.stage = stage
        return self

    def __str__(self) -> str:
        where = [p for p in (self.image_id, self.stage) if p]
        if not where:
            return self.message
        return f"[{'/'.join(where)}] {self.message}"


class UnsupportedFormatError(NordMapError):
    pass


class ModelInferenceError(NordMapError):
    pass


class ConfigurationError(NordMapError):
    pass


class ResourceExhaustionError(NordMapError):
    pass


class MappingCancelled(NordMapError):
    pass


__all__ = [
    "NordMapError",
    "UnsupportedFormatError",
    "ModelInferenceError",
    "ConfigurationError",
    "ResourceExhaustionError",
    "MappingCancelled",
]
