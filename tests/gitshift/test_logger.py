"""Tests for gitshift logging setup and structured context."""

import json
import logging

import pytest

from gitshift.constants import LOGS_DIR_NAME, get_config_dir
from gitshift.orchestrator import SwitchStep
from gitshift.utils import logger as logger_module
from gitshift.utils.logger import MASK, JsonFormatter, get_logger, log_context


@pytest.fixture
def logger_name():
    name = "gitshift-logger-test"
    yield name
    test_logger = logging.getLogger(name)
    for handler in list(test_logger.handlers):
        test_logger.removeHandler(handler)
        handler.close()


class TestLogContext:
    def test_secret_fields_masked(self):
        context = log_context(alias="work", token="ghp_secret", github_token="x", passphrase="p")["context"]
        assert context == {"alias": "work", "token": MASK, "github_token": MASK, "passphrase": MASK}

    def test_none_dropped_and_enums_flattened(self):
        context = log_context(failed_step=None, step=SwitchStep.AGENT, completed=[SwitchStep.LOAD_IDENTITY])
        assert context == {"context": {"step": "agent", "completed": ["load_identity"]}}


class TestJsonFormatter:
    def test_context_in_output(self):
        record = logging.LogRecord("gitshift.orchestrator", logging.INFO, __file__, 1, "Switched to work", None, None)
        record.context = {"alias": "work"}
        data = json.loads(JsonFormatter().format(record))
        assert data["message"] == "Switched to work"
        assert data["context"] == {"alias": "work"}
        assert data["level"] == "INFO"

    def test_no_context(self):
        record = logging.LogRecord("gitshift", logging.WARNING, __file__, 1, "plain", None, None)
        assert "context" not in json.loads(JsonFormatter().format(record))


class TestGetLogger:
    def test_writes_json_lines(self, logger_name):
        test_logger = get_logger(logger_name)
        test_logger.info("Stored token for work", extra=log_context(alias="work", kind="github_personal"))
        for handler in test_logger.handlers:
            handler.flush()

        lines = (get_config_dir() / LOGS_DIR_NAME / "gitshift.json").read_text().splitlines()
        data = json.loads(lines[-1])
        assert data["context"] == {"alias": "work", "kind": "github_personal"}

    def test_unwritable_log_dir_warns(self, logger_name, monkeypatch, capsys):
        def denied():
            raise PermissionError(13, "Permission denied")
        monkeypatch.setattr(logger_module, "_get_log_dir", denied)

        test_logger = get_logger(logger_name)

        assert len(test_logger.handlers) == 1
        assert "File logging disabled: Permission denied" in capsys.readouterr().err

    def test_configured_once(self, logger_name):
        first = len(get_logger(logger_name).handlers)
        assert len(get_logger(logger_name).handlers) == first
