"""
Configuration loading and logging setup.
"""
import json
import logging

import pytest

from rnaseq_de.config import DEFAULT_CONFIG, load_config, setup_logging


class TestLoadConfig:

    def test_defaults(self):
        config = load_config()
        assert config == DEFAULT_CONFIG
        assert config["backend"] == "pydeseq2"
        assert config["contrast"] == ["DPN", "Control"]

    def test_defaults_not_mutated(self):
        config = load_config(overrides={"padj_cutoff": 0.1})
        assert config["padj_cutoff"] == 0.1
        assert DEFAULT_CONFIG["padj_cutoff"] == 0.05

    def test_file_then_overrides(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"transform": "rlog", "padj_cutoff": 0.01, "extra_key": 1}))

        config = load_config(path, overrides={"transform": "log2", "backend": None})

        assert config["transform"] == "log2"
        assert config["padj_cutoff"] == 0.01
        assert config["extra_key"] == 1
        # None overrides are ignored
        assert config["backend"] == "pydeseq2"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.json")

    def test_non_object_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(ValueError):
            load_config(path)


class TestSetupLogging:

    def test_no_duplicate_handlers(self):
        logger = setup_logging("rnaseq_de.test_logging")
        n_handlers = len(logger.handlers)
        again = setup_logging("rnaseq_de.test_logging")

        assert again is logger
        assert len(again.handlers) == n_handlers
        assert isinstance(logger, logging.Logger)
