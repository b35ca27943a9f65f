from __future__ import annotations

import logging

import pytest

from assistant_shells.config import DEFAULT_PROMPTS, Config, default_config_path, load_config
from assistant_shells.log_utils import LogConfig, configure_logging, parse_level


def test_defaults_without_file(tmp_path):
    config = load_config(tmp_path / "missing.yaml")
    assert config == Config()
    assert config.prompts["explain"] == "Explain {this}"


def test_yaml_then_environment(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(
        "default_tool: codex\n"
        "backend: tmux\n"
        "send_delay: 1.5\n"
        "prompts:\n"
        "  mine: 'Look at {file}'\n"
        "tools:\n"
        "  codex:\n"
        "    cmd: [codex]\n"
    )
    monkeypatch.setenv("ASSISTANT_SHELLS_BACKEND", "dtach")
    monkeypatch.setenv("ASSISTANT_SHELLS_READY_TIMEOUT", "3")
    monkeypatch.setenv("ASSISTANT_SHELLS_LOG_STDERR", "yes")

    config = load_config(path)
    assert config.default_tool == "codex"
    assert config.backend == "dtach"
    assert config.send_delay == 1.5
    assert config.ready_timeout == 3.0
    assert config.log_stderr is True
    assert config.prompts["mine"] == "Look at {file}"
    assert config.prompts["review"] == DEFAULT_PROMPTS["review"]
    assert config.tools == {"codex": {"cmd": ["codex"]}}


def test_bad_numbers_and_shapes_are_rejected(tmp_path, monkeypatch):
    monkeypatch.setenv("ASSISTANT_SHELLS_SEND_DELAY", "soon")
    with pytest.raises(ValueError, match="ASSISTANT_SHELLS_SEND_DELAY"):
        load_config(tmp_path / "missing.yaml")
    monkeypatch.delenv("ASSISTANT_SHELLS_SEND_DELAY")

    path = tmp_path / "list.yaml"
    path.write_text("- one\n- two\n")
    with pytest.raises(ValueError, match="expected a mapping"):
        load_config(path)

    path.write_text("tools: [claude]\n")
    with pytest.raises(ValueError, match="tools"):
        load_config(path)


def test_default_config_path(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    assert default_config_path() == tmp_path / "xdg" / "assistant_shells" / "config.yaml"
    monkeypatch.setenv("ASSISTANT_SHELLS_CONFIG", str(tmp_path / "elsewhere.yaml"))
    assert default_config_path() == tmp_path / "elsewhere.yaml"


def test_parse_level():
    assert parse_level("debug") == logging.DEBUG
    assert parse_level("15") == 15
    assert parse_level("chatty") == logging.INFO
    assert parse_level(None, logging.WARNING) == logging.WARNING


def test_configure_logging_writes_package_log(tmp_path):
    log_file = tmp_path / "logs" / "ash.log"
    configure_logging(LogConfig(log_file=log_file, level=logging.DEBUG))
    pkg_logger = logging.getLogger("assistant_shells")
    try:
        assert len(pkg_logger.handlers) == 1
        logging.getLogger("assistant_shells.session").debug("hello from the session")
        for handler in pkg_logger.handlers:
            handler.flush()
        assert "hello from the session" in log_file.read_text()

        configure_logging(LogConfig(log_file=None, stderr=True))
        assert len(pkg_logger.handlers) == 1
    finally:
        configure_logging(LogConfig(log_file=None))
