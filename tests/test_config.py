"""Tests for layered configuration."""
from __future__ import annotations

import json

import pytest

from cycleproof.config import DEFAULT_CONFIG, load_config
from cycleproof.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("CYCLEPROOF_PROVER", "CYCLEPROOF_PROOF_KIND", "CYCLEPROOF_MAX_WORKERS", "CYCLEPROOF_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)


def _write(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


class TestLoadConfig:
    def test_defaults(self, tmp_path):
        config = load_config(workspace=tmp_path)
        assert config == DEFAULT_CONFIG

    def test_defaults_not_mutated(self, tmp_path):
        config = load_config(workspace=tmp_path)
        config["prover"] = "mock"
        assert DEFAULT_CONFIG["prover"] == "transcript"

    def test_explicit_config_file(self, tmp_path):
        path = _write(tmp_path / "cfg.json", {"prover": "mock", "max_workers": 2})
        config = load_config(config_path=path)
        assert config["prover"] == "mock"
        assert config["max_workers"] == 2

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(config_path=tmp_path / "nope.json")

    def test_workspace_overrides_global(self, tmp_path):
        global_path = _write(tmp_path / "global.json", {"prover": "mock", "max_workers": 2})
        _write(tmp_path / "ws" / ".cycleproof" / "config.json", {"max_workers": 8})
        config = load_config(config_path=global_path, workspace=tmp_path / "ws")
        assert config["prover"] == "mock"
        assert config["max_workers"] == 8

    def test_env_overrides_files(self, tmp_path, monkeypatch):
        _write(tmp_path / ".cycleproof" / "config.json", {"prover": "mock"})
        monkeypatch.setenv("CYCLEPROOF_PROVER", "transcript")
        monkeypatch.setenv("CYCLEPROOF_MAX_WORKERS", "3")
        monkeypatch.setenv("CYCLEPROOF_LOG_LEVEL", "debug")
        config = load_config(workspace=tmp_path)
        assert config["prover"] == "transcript"
        assert config["max_workers"] == 3
        assert config["log_level"] == "DEBUG"

    def test_unreadable_file_is_skipped(self, tmp_path):
        path = tmp_path / ".cycleproof" / "config.json"
        path.parent.mkdir()
        path.write_text("{not json")
        assert load_config(workspace=tmp_path) == DEFAULT_CONFIG


class TestValidation:
    @pytest.mark.parametrize(
        "override",
        [
            {"proof_kind": "groth16"},
            {"max_workers": 0},
            {"max_workers": "four"},
            {"log_level": "LOUD"},
            {"prover": ""},
        ],
    )
    def test_rejects_bad_values(self, tmp_path, override):
        path = _write(tmp_path / "cfg.json", override)
        with pytest.raises(ConfigError):
            load_config(config_path=path)

    def test_bad_env_worker_count(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CYCLEPROOF_MAX_WORKERS", "many")
        with pytest.raises(ConfigError):
            load_config(workspace=tmp_path)

    def test_proof_kind_normalised(self, tmp_path):
        path = _write(tmp_path / "cfg.json", {"proof_kind": "CORE"})
        assert load_config(config_path=path)["proof_kind"] == "core"
