"""Shared fixtures and fake segmentation models."""

from __future__ import annotations

import time
from typing import Any, Callable, List

import numpy as np
import pytest

from nord_map.constants import DEFAULT_LABELS
from nord_map.palette_data import Palette, nord_palette


def pytest_assertrepr_compare(
    config: Any, op: str, left: str, right: str
) -> list[str] | None:
    """See full error diffs"""
    del config
    if op in ("==", "!="):
        return [f"{left} {op} {right}"]
    return None


@pytest.fixture
def palette() -> Palette:
    return nord_palette()


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(20240611)


@pytest.fixture
def noisy_image(rng: np.random.Generator) -> np.ndarray:
    """A small photographic-ish RGB image: a gradient with noise."""
    h, w = 12, 16
    ys = np.linspace(0, 255, h)[:, None]
    xs = np.linspace(0, 255, w)[None, :]
    base = np.stack(
        [np.broadcast_to(ys, (h, w)), np.broadcast_to(xs, (h, w)), (ys + xs) / 2], axis=2
    )
    noise = rng.integers(-20, 21, size=(h, w, 3))
    return np.clip(base + noise, 0, 255).astype(np.uint8)


def constant_scores(label: int, size: int = 4, strength: float = 10.0) -> np.ndarray:
    """[1,K,size,size] scores that make `label` win everywhere."""
    scores = np.zeros((1, len(DEFAULT_LABELS), size, size), dtype=np.float32)
    scores[0, label] = strength
    return scores


class CountingModel:
    """Segmentation model stand-in that records each call."""

    def __init__(self, fn: Callable[[np.ndarray], np.ndarray]) -> None:
        self.fn = fn
        self.calls: List[tuple] = []

    def __call__(self, tensor: np.ndarray) -> np.ndarray:
        self.calls.append(tensor.shape)
        return self.fn(tensor)


def raising_model(tensor: np.ndarray) -> np.ndarray:
    raise RuntimeError("weights are corrupt")


def slow_model(tensor: np.ndarray) -> np.ndarray:
    time.sleep(0.5)
    return constant_scores(1)
