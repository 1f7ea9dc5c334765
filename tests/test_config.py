import json
import os

import pytest

from hepfit.config import DEFAULT_TREE_NAME, DIMUON_DATA_FILES, AnalysisConfig, resolve_output_path


@pytest.fixture
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("HEPFIT_"):
            monkeypatch.delenv(name)
    return monkeypatch


class TestAnalysisConfig:
    def test_defaults(self, clean_env):
        config = AnalysisConfig.from_env()
        assert config.tree_name == DEFAULT_TREE_NAME
        assert config.files == DIMUON_DATA_FILES
        assert config.files is not DIMUON_DATA_FILES
        assert config.num_threads == 0
        assert config.batch_mode

    def test_environment(self, clean_env):
        clean_env.setenv("HEPFIT_NUM_THREADS", "4")
        clean_env.setenv("HEPFIT_BATCH_MODE", "off")
        clean_env.setenv("HEPFIT_DATA_FILES", "a.root, b.root,")
        clean_env.setenv("HEPFIT_EVENTS", "500")
        config = AnalysisConfig.from_env()
        assert config.num_threads == 4
        assert not config.batch_mode
        assert config.files == ["a.root", "b.root"]
        assert config.n_events == 500

    def test_overrides_take_precedence(self, clean_env):
        clean_env.setenv("HEPFIT_SEED", "1")
        config = AnalysisConfig.from_env(seed=99, num_cpu=None)
        assert config.seed == 99
        assert config.num_cpu == 1

    def test_from_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"tree_name": "tree", "files": ["local.root"], "num_cpu": 2}))
        config = AnalysisConfig.from_json(path, num_cpu=3)
        assert config.tree_name == "tree"
        assert config.files == ["local.root"]
        assert config.num_cpu == 3

    def test_unknown_json_keys(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"threads": 4}))
        with pytest.raises(ValueError, match="threads"):
            AnalysisConfig.from_json(path)

    @pytest.mark.parametrize("changes", [
        {"num_threads": -1},
        {"num_cpu": 0},
        {"n_events": 0},
        {"print_level": 4},
        {"files": []},
    ])
    def test_invalid(self, changes):
        with pytest.raises(ValueError):
            AnalysisConfig(**changes)

    def test_to_dict(self):
        assert AnalysisConfig(seed=5).to_dict()["seed"] == 5


def test_resolve_output_path(config):
    path = resolve_output_path("plot.png", config)
    assert path == os.path.join(config.output_dir, "plot.png")
    assert os.path.isdir(config.output_dir)
