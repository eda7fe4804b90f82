"""Label-dependent palette subsets."""

import numpy as np
import pytest

from nord_map.colour_convert import rgb_to_lab
from nord_map.constants import DEFAULT_LABELS
from nord_map.core_types import UNKNOWN_LABEL
from nord_map.errors import ConfigurationError
from nord_map.region_mapper import RegionAwareMapper

SKY = DEFAULT_LABELS.index("sky")
FOLIAGE = DEFAULT_LABELS.index("foliage")
BUILDING = DEFAULT_LABELS.index("building")


def _lab(r: int, g: int, b: int) -> np.ndarray:
    return rgb_to_lab(np.array([r, g, b], dtype=np.uint8))


def test_default_preferences(palette) -> None:
    mapper = RegionAwareMapper(palette)
    assert mapper.candidates_for(SKY).tolist() == [4, 5, 6, 7, 8, 9, 10]
    assert mapper.candidates_for(UNKNOWN_LABEL).tolist() == list(range(16))
    # No preference for buildings: full palette
    assert mapper.candidates_for(BUILDING).tolist() == list(range(16))


def test_sky_keeps_to_its_subset(palette) -> None:
    mapper = RegionAwareMapper(palette)
    red = _lab(200, 30, 40)
    unconstrained, _ = mapper.resolve(red, UNKNOWN_LABEL)
    constrained, _ = mapper.resolve(red, SKY)
    assert unconstrained.index == 11
    assert constrained.index in range(4, 11)
    assert constrained.distance >= unconstrained.distance


def test_error_is_source_minus_palette(palette) -> None:
    mapper = RegionAwareMapper(palette)
    lab = _lab(120, 200, 90)
    match, error = mapper.resolve(lab, FOLIAGE)
    assert error.dtype == np.float32
    assert np.allclose(error, lab - palette.lab[match.index])
    assert np.linalg.norm(error) == pytest.approx(match.distance, rel=1e-4)


def test_overrides_replace_defaults(palette) -> None:
    mapper = RegionAwareMapper(palette, overrides={"sky": ("nord8",), "building": ["nord0", 3]})
    assert mapper.candidates_for(SKY).tolist() == [8]
    assert mapper.candidates_for(BUILDING).tolist() == [0, 3]
    assert mapper.describe()["sky"] == ["nord8"]


def test_override_for_unknown_class(palette) -> None:
    with pytest.raises(ConfigurationError, match="not a known class"):
        RegionAwareMapper(palette, overrides={"lava": ("nord11",)})


def test_override_with_unknown_entry(palette) -> None:
    with pytest.raises(ConfigurationError, match="sky"):
        RegionAwareMapper(palette, overrides={"sky": ("nord99",)})


def test_unknown_metric(palette) -> None:
    with pytest.raises(ConfigurationError):
        RegionAwareMapper(palette, metric="cie94")


@pytest.mark.parametrize("metric", ["cie76", "ciede2000"])
def test_batched_matches_single(palette, rng, metric) -> None:
    mapper = RegionAwareMapper(palette, metric=metric)
    rgb = rng.integers(0, 256, size=(60, 3), dtype=np.uint8)
    lab = rgb_to_lab(rgb)
    labels = rng.integers(-1, len(DEFAULT_LABELS), size=60).astype(np.int16)
    ids, dist, errors = mapper.resolve_rows(lab, labels)
    for i in range(60):
        match, error = mapper.resolve(lab[i], int(labels[i]))
        assert ids[i] == match.index
        assert dist[i] == pytest.approx(match.distance)
        assert np.allclose(errors[i], error)


def test_batched_length_mismatch(palette) -> None:
    mapper = RegionAwareMapper(palette)
    with pytest.raises(ValueError):
        mapper.resolve_rows(np.zeros((3, 3), dtype=np.float32), np.zeros(2, dtype=np.int16))


def test_match_values_agrees_with_resolve(palette, rng) -> None:
    mapper = RegionAwareMapper(palette)
    lab = rgb_to_lab(rng.integers(0, 256, size=(20, 3), dtype=np.uint8))
    for row in lab:
        L, a, b = (float(v) for v in row)
        match, _error = mapper.resolve(row, SKY)
        assert mapper.match_values(L, a, b, SKY) == match


def test_match_cache_is_bounded(palette, rng, monkeypatch) -> None:
    monkeypatch.setattr("nord_map.region_mapper.MATCH_CACHE_MAX_ENTRIES", 5)
    mapper = RegionAwareMapper(palette)
    for L, a, b in rng.uniform(0, 100, size=(40, 3)).tolist():
        mapper.match_values(L, a, b)
        assert mapper.cache_size() <= 5
    first = mapper.match_values(50.0, 0.0, 0.0)
    assert mapper.match_values(50.0, 0.0, 0.0) is first
