"""Tests for localchat config loading."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from localchat.config import (
    DEFAULT_HOST,
    DEFAULT_MODEL,
    AppConfig,
    ChatConfig,
    load_config,
)


class TestChatConfig:
    def test_defaults(self):
        cfg = ChatConfig()
        assert cfg.base_url == DEFAULT_HOST
        assert cfg.model == DEFAULT_MODEL
        assert cfg.system_prompt == ""

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError):
            ChatConfig(temperature=0.2)


class TestLoadConfig:
    @pytest.fixture(autouse=True)
    def _isolate(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(Path, "home", lambda: tmp_path / "home")

    def test_defaults_when_no_file(self):
        cfg, path = load_config()
        assert path is None
        assert cfg == AppConfig()

    def test_explicit_path(self, tmp_path):
        f = tmp_path / "custom.yaml"
        f.write_text(yaml.dump({
            "ollama": {"base_url": "http://gpu-box:11434", "model": "llama3"},
            "storage": {"history_db": str(tmp_path / "h.db")},
        }))
        cfg, path = load_config(f)
        assert path == f.resolve()
        assert cfg.ollama.base_url == "http://gpu-box:11434"
        assert cfg.ollama.model == "llama3"
        assert cfg.ollama.system_prompt == ""
        assert cfg.storage.history_db == str(tmp_path / "h.db")

    def test_explicit_missing_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_cwd_file(self, tmp_path):
        (tmp_path / "localchat.yaml").write_text("ollama:\n  model: phi3\n")
        cfg, path = load_config()
        assert cfg.ollama.model == "phi3"
        assert path == (tmp_path / "localchat.yaml").resolve()

    def test_home_file(self, tmp_path):
        home = tmp_path / "home" / ".localchat"
        home.mkdir(parents=True)
        (home / "localchat.yaml").write_text("ollama:\n  system_prompt: Be brief.\n")
        cfg, _ = load_config()
        assert cfg.ollama.system_prompt == "Be brief."

    def test_cwd_wins_over_home(self, tmp_path):
        home = tmp_path / "home" / ".localchat"
        home.mkdir(parents=True)
        (home / "localchat.yaml").write_text("ollama:\n  model: from-home\n")
        (tmp_path / "localchat.yaml").write_text("ollama:\n  model: from-cwd\n")
        cfg, _ = load_config()
        assert cfg.ollama.model == "from-cwd"

    def test_empty_file(self, tmp_path):
        (tmp_path / "localchat.yaml").write_text("")
        cfg, _ = load_config()
        assert cfg == AppConfig()

    def test_unknown_ollama_key_rejected(self, tmp_path):
        (tmp_path / "localchat.yaml").write_text("ollama:\n  temperature: 0.3\n")
        with pytest.raises(ValidationError):
            load_config()
