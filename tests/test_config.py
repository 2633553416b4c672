"""
Tests for store configuration (TOML) and logging setup.
"""

import logging

import pytest

from memorypilot.config import (
    CONFIG_FILENAME,
    EmbeddingConfig,
    SearchConfig,
    StoreConfig,
    get_default_store_path,
    load_config,
    load_or_create_config,
    save_config,
)
from memorypilot.errors import log_exception
from memorypilot.logging_config import configure_ops_log, remove_ops_log


class TestStorePath:

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEMORYPILOT_STORE_PATH", str(tmp_path / "custom"))
        assert get_default_store_path() == (tmp_path / "custom").resolve()

    def test_default_in_home(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MEMORYPILOT_STORE_PATH", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert get_default_store_path() == tmp_path / ".memorypilot"


class TestLoadSave:

    def test_create_writes_defaults(self, tmp_path):
        config = load_or_create_config(tmp_path)
        assert (tmp_path / CONFIG_FILENAME).exists()
        assert config.embedding.name == "ollama"
        assert config.embedding.model == "nomic-embed-text"
        assert config.embedding.timeout == 5.0
        assert config.search.keyword_weight == 0.4
        assert config.search.semantic_weight == 0.6
        assert config.search.default_limit == 5
        assert config.database_path == tmp_path / "memories.db"

    def test_round_trip(self, tmp_path):
        original = StoreConfig(
            path=tmp_path,
            embedding=EmbeddingConfig(
                name="ollama", model="mxbai-embed-large",
                base_url="http://gpu:11434", timeout=2.0,
                params={"keep_alive": "5m"},
            ),
            search=SearchConfig(keyword_weight=0.5, semantic_weight=0.5, default_limit=8),
        )
        save_config(original)
        loaded = load_config(tmp_path)
        assert loaded.embedding == original.embedding
        assert loaded.search == original.search
        assert loaded.created == original.created

    def test_partial_file_uses_defaults(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[embedding]\nname = "none"\n')
        config = load_config(tmp_path)
        assert config.embedding.name == "none"
        assert config.search.default_limit == 5

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_invalid_toml(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[embedding\nname=")
        with pytest.raises(ValueError, match="Invalid config"):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[store]\nversion = 9\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    @pytest.mark.parametrize("search", [
        "keyword_weight = -1.0",
        "keyword_weight = 0.0\nsemantic_weight = 0.0",
        "default_limit = 0",
    ])
    def test_invalid_search_section(self, tmp_path, search):
        (tmp_path / CONFIG_FILENAME).write_text(f"[search]\n{search}\n")
        with pytest.raises(ValueError):
            load_config(tmp_path)


class TestLogging:

    def test_ops_log_receives_info(self, tmp_path):
        handler = configure_ops_log(tmp_path)
        try:
            logging.getLogger("memorypilot.memory_store").info("created something")
            handler.flush()
        finally:
            remove_ops_log(handler)
        assert "created something" in (tmp_path / "memorypilot-ops.log").read_text()

    def test_remove_detaches(self, tmp_path):
        handler = configure_ops_log(tmp_path)
        remove_ops_log(handler)
        assert handler not in logging.getLogger("memorypilot").handlers

    def test_log_exception_writes_traceback(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEMORYPILOT_STORE_PATH", str(tmp_path))
        try:
            raise RuntimeError("kaboom")
        except RuntimeError as e:
            path = log_exception(e, context="test")
        assert path == tmp_path / "memorypilot-errors.log"
        text = path.read_text()
        assert "RuntimeError: kaboom" in text
        assert "Traceback" in text
