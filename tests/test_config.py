"""Tests for environment loading, logging setup and the default repository."""

import logging
import os

import pytest

from expensego import config
from expensego.db import repository as repository_module
from expensego.db import get_repository


@pytest.fixture
def dirs(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "DATA_DIR", tmp_path / "data")
    monkeypatch.setattr(config, "LOG_DIR", tmp_path / "logs")
    return tmp_path


class TestConfig:
    """Tests for the configuration helpers."""

    def test_load_environment(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("EXPENSEGO_CONFIG_MARKER=loaded\n")
        try:
            assert config.load_environment(env)
            assert os.environ["EXPENSEGO_CONFIG_MARKER"] == "loaded"
        finally:
            os.environ.pop("EXPENSEGO_CONFIG_MARKER", None)

    def test_missing_env_file(self, tmp_path):
        assert not config.load_environment(tmp_path / "absent.env")

    @pytest.mark.parametrize(
        "name,level",
        [("debug", logging.DEBUG), ("ERROR", logging.ERROR), ("chatty", logging.INFO)],
    )
    def test_log_level(self, monkeypatch, name, level):
        monkeypatch.setattr(config, "LOG_LEVEL", name)
        assert config.get_log_level() == level

    def test_file_logging_creates_log(self, dirs):
        config.configure_logging(log_to_file=True)

        assert (dirs / "logs" / config.LOG_FILE).exists()
        assert (dirs / "data").is_dir()


class TestDefaultRepository:
    """Tests for the module-level repository."""

    def test_singleton_persists_under_data_dir(self, dirs, monkeypatch):
        monkeypatch.setattr(repository_module, "_default_repository", None)

        repo = get_repository()
        try:
            assert get_repository() is repo
            repo.create_bank("Home", year=2024)
            assert (dirs / "data" / "database.bin").exists()
        finally:
            repo.close()
