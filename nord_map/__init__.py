# nord_map/__init__.py
"""
nord_map package.

Purpose:
  Recolour images to the 16-colour Nord palette in CIE Lab, with optional
  region-aware palette subsets from a segmentation model and error-diffusion
  dithering. See nord_map.cli for the image2nord command.

Public API:
  map_image      : map one uint8 RGB/RGBA array, returns a MappingResult.
  map_many       : map several images on a thread pool with cancellation.
  Orchestrator   : palette, config and adapter built once, reused per image.
  MappingConfig  : validated, immutable run options.
  nord_palette   : the shared Nord Palette.
  SegmentationAdapter / load_onnx_model : optional segmentation.
  colour_convert : colour space transforms (rgb_to_lab, lab_to_rgb, ...).
  errors         : NordMapError and its subclasses.

Quick start:
  from nord_map import map_image
  result = map_image(rgb_array)
  result.rgb  # palette colours only
"""

__version__ = "0.1.0"

# Re-export namespaces for convenience.
from . import colour_convert
from . import core_types
from . import errors
from . import palette_data
from . import utils

from .config import MappingConfig
from .errors import (
    ConfigurationError,
    MappingCancelled,
    ModelInferenceError,
    NordMapError,
    ResourceExhaustionError,
    UnsupportedFormatError,
)
from .onnx_model import load_onnx_model
from .orchestrator import MappingResult, MappingStats, Orchestrator, map_image, map_many
from .palette_data import Palette, build_palette, nord_palette
from .segmentation import ModelSpec, SegmentationAdapter

__all__ = [
    "__version__",
    "colour_convert",
    "core_types",
    "errors",
    "palette_data",
    "utils",
    "MappingConfig",
    "NordMapError",
    "UnsupportedFormatError",
    "ModelInferenceError",
    "ConfigurationError",
    "ResourceExhaustionError",
    "MappingCancelled",
    "load_onnx_model",
    "MappingResult",
    "MappingStats",
    "Orchestrator",
    "map_image",
    "map_many",
    "Palette",
    "build_palette",
    "nord_palette",
    "ModelSpec",
    "SegmentationAdapter",
]
