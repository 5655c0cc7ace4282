"""Tests for the command line entry point."""
import json
import logging
from logging.handlers import RotatingFileHandler

import pytest

from notd_core.config import config
from notd_core.main import main, parse_args, run_batch_file, update_config
from notd_core.observability import ROOT_LOGGER_NAME


@pytest.fixture
def restore_logging():
    root = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


class TestArguments:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("NOTD_DATABASE_PATH", raising=False)
        monkeypatch.delenv("NOTD_LOG_LEVEL", raising=False)
        args = parse_args([])
        assert args.database_path is None
        assert args.log_level == "INFO"
        assert args.batch is None
        assert args.apply_definitions is False

    def test_update_config(self, monkeypatch, tmp_path):
        monkeypatch.setattr(config, "database_path", config.database_path)
        monkeypatch.setattr(config, "log_dir", config.log_dir)
        update_config(parse_args(["--database-path", str(tmp_path / "x.db"),
                                  "--log-dir", str(tmp_path / "logs")]))
        assert config.database_path == tmp_path / "x.db"
        assert config.log_dir == tmp_path / "logs"


class TestRunBatchFile:
    """--batch applies a JSON file and prints the results."""

    def test_prints_results(self, engine, page_id, tmp_path, capsys, monkeypatch):
        monkeypatch.setattr(config, "notifications_enabled", False)
        batch = tmp_path / "batch.json"
        batch.write_text(json.dumps([
            {"type": "create", "payload": {"page_id": page_id, "content": "priority::high"}}
        ]))

        assert run_batch_file(engine, str(batch)) == 0

        results = json.loads(capsys.readouterr().out)
        assert results[0]["status"] == "success"
        assert results[0]["note"]["properties"]["priority"][0]["value"] == "high"

    def test_invalid_batch_exits_with_error(self, engine, tmp_path, capsys):
        batch = tmp_path / "batch.json"
        batch.write_text(json.dumps([{"type": "rename", "payload": {}}]))

        assert run_batch_file(engine, str(batch)) == 1

        error = json.loads(capsys.readouterr().err)
        assert error["code_name"] == "BATCH_VALIDATION_FAILED"


class TestMain:
    def test_apply_definitions_mode(self, test_config, tmp_path, monkeypatch, restore_logging):
        monkeypatch.setattr(config, "log_dir", None)
        db_path = tmp_path / "cli.db"

        with pytest.raises(SystemExit) as exc:
            main(["--database-path", str(db_path), "--log-dir", str(tmp_path / "logs"),
                  "--apply-definitions"])

        assert exc.value.code == 0
        assert db_path.exists()
        assert (tmp_path / "logs" / "notd.log").exists()
        assert any(isinstance(h, RotatingFileHandler)
                   for h in logging.getLogger(ROOT_LOGGER_NAME).handlers)
