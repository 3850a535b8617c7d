"""Tests for the pipeline configuration object."""

import dataclasses

import pytest

from reindeer_index.config import AREAS, ARTIFACT_FILES, PipelineConfig, default_config


def test_defaults():
    config = default_config()
    assert list(config.areas) == sorted(AREAS)
    assert config.years[0] == config.year_range[0]
    assert config.years[-1] == config.year_range[1]
    assert not config.allow_replacement
    assert config.coverage_threshold == 1.0


def test_overrides_return_a_copy():
    config = default_config()
    other = config.with_overrides(n_samples=50, seed=1)
    assert other.n_samples == 50 and other.seed == 1
    assert config.n_samples != 50


def test_config_is_frozen():
    with pytest.raises(dataclasses.FrozenInstanceError):
        default_config().n_samples = 5


def test_paths(tmp_path):
    config = PipelineConfig(data_dir=str(tmp_path / "in"), output_dir=str(tmp_path / "out"))
    assert config.input_path('harvest') == tmp_path / "in" / "harvest.csv"
    assert config.artifact_path('indicator') == tmp_path / "out" / ARTIFACT_FILES['indicator']

    with pytest.raises(ValueError, match="Unknown artifact"):
        config.artifact_path('nonsense')
    with pytest.raises(ValueError, match="Unknown input"):
        config.input_path('nonsense')
