# nord_map/config.py
from __future__ import annotations

"""
Run configuration.

MappingConfig is built once at start-up, validated against the palette, and
passed explicitly into the orchestrator. It is never mutated; use
dataclasses.replace() (or with_options) for variants.

Exports:
  MappingConfig
  parse_override("sky=nord8,nord9") -> ("sky", ("nord8", "nord9"))
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from .constants import (
    DEFAULT_KERNEL,
    DEFAULT_METRIC,
    KERNELS,
    MAX_PIXELS,
    MODEL_TIMEOUT,
)
from .core_types import PaletteRef, RGBTuple, hex_to_rgb
from .errors import ConfigurationError
from .palette_data import Palette
from .resolver import check_metric


@dataclass(frozen=True)
class MappingConfig:
    """
    Options consumed by the mapping engine.

      segmentation         use the segmentation adapter when one is supplied
      dither_strength      0 disables dithering, else scales the kernel (<= 1)
      kernel               error diffusion kernel name (see constants.KERNELS)
      serpentine           alternate scan direction per row (default: raster)
      metric               "cie76" (Euclidean Lab) or "ciede2000"
      class_overrides      label -> palette entries, merged over the defaults
      background           hex colour transparent pixels are flattened onto;
                           None keeps alpha and passes it through
      max_pixels           refuse larger images with ResourceExhaustionError
      workers              threads for colour conversion precompute
      segmentation_timeout seconds before a model call falls back; replaces
                           the timeout of the adapter given to Orchestrator
      progress             print a per-row progress line while dithering
      debug                verbose [debug] lines
    """

    segmentation: bool = True
    dither_strength: float = 1.0
    kernel: str = DEFAULT_KERNEL
    serpentine: bool = False
    metric: str = DEFAULT_METRIC
    class_overrides: Mapping[str, Tuple[PaletteRef, ...]] = field(default_factory=dict)
    background: Optional[str] = None
    max_pixels: int = MAX_PIXELS
    workers: int = 1
    segmentation_timeout: float = MODEL_TIMEOUT
    progress: bool = False
    debug: bool = False

    @property
    def dithering(self) -> bool:
        return self.dither_strength > 0.0

    @property
    def background_rgb(self) -> Optional[RGBTuple]:
        if self.background is None:
            return None
        return hex_to_rgb(self.background)

    def validate(self, palette: Optional[Palette] = None) -> "MappingConfig":
        """Raise ConfigurationError for any invalid option. Returns self."""
        stage = "config"
        try:
            strength = float(self.dither_strength)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"dither_strength must be a number, got {self.dither_strength!r}",
                stage=stage,
            ) from None
        if not 0.0 <= strength <= 1.0:
            raise ConfigurationError(
                f"dither_strength must be within [0, 1], got {strength}", stage=stage
            )
        if self.kernel not in KERNELS:
            raise ConfigurationError(
                f"unknown dithering kernel {self.kernel!r}; "
                f"expected one of {', '.join(sorted(KERNELS))}",
                stage=stage,
            )
        try:
            check_metric(self.metric)
        except ConfigurationError as exc:
            raise exc.with_context(stage=stage)
        if self.background is not None:
            try:
                hex_to_rgb(self.background)
            except ValueError as exc:
                raise ConfigurationError(
                    f"invalid background colour: {exc}", stage=stage
                ) from None
        if int(self.max_pixels) <= 0:
            raise ConfigurationError("max_pixels must be positive", stage=stage)
        if int(self.workers) < 1:
            raise ConfigurationError("workers must be at least 1", stage=stage)
        if float(self.segmentation_timeout) <= 0.0:
            raise ConfigurationError(
                "segmentation_timeout must be positive", stage=stage
            )

        for label, refs in self.class_overrides.items():
            if not str(label).strip():
                raise ConfigurationError("class override with empty label", stage=stage)
            if isinstance(refs, (str, int)):
                raise ConfigurationError(
                    f"class override for {label!r} must be a sequence of palette entries",
                    stage=stage,
                )
            if len(tuple(refs)) == 0:
                raise ConfigurationError(
                    f"class override for {label!r} names no palette entries",
                    stage=stage,
                )
            if palette is not None:
                try:
                    palette.resolve_names(refs)
                except ConfigurationError as exc:
                    raise ConfigurationError(
                        f"class override for {label!r}: {exc.message}", stage=stage
                    ) from None
        return self

    def with_options(self, **changes: Any) -> "MappingConfig":
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "MappingConfig":
        """
        Build from a plain mapping (e.g. parsed JSON). Unknown keys are an error.
        class_overrides values may be lists or comma-separated strings.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"unknown configuration keys: {', '.join(unknown)}", stage="config"
            )
        kwargs: Dict[str, Any] = dict(data)
        overrides = kwargs.get("class_overrides")
        if overrides is not None:
            if not isinstance(overrides, Mapping):
                raise ConfigurationError(
                    "class_overrides must be a mapping of label -> palette entries",
                    stage="config",
                )
            kwargs["class_overrides"] = {
                str(label): _split_refs(refs) for label, refs in overrides.items()
            }
        return cls(**kwargs)


def _split_refs(refs: Any) -> Tuple[PaletteRef, ...]:
    if isinstance(refs, str):
        return tuple(r.strip() for r in refs.split(",") if r.strip())
    if isinstance(refs, int):
        return (refs,)
    return tuple(refs)


def parse_override(text: str) -> Tuple[str, Tuple[PaletteRef, ...]]:
    """Parse 'label=nord8,nord9' as used on the command line."""
    label, sep, refs = text.partition("=")
    if not sep or not label.strip():
        raise ConfigurationError(
            f"override must look like 'label=nord8,nord9', got {text!r}", stage="config"
        )
    parsed = _split_refs(refs)
    if not parsed:
        raise ConfigurationError(
            f"override for {label.strip()!r} names no palette entries", stage="config"
        )
    return label.strip(), parsed


__all__ = ["MappingConfig", "parse_override"]
