"""Tests for the tts-reader logging module and the ``tts-reader`` CLI.

Logging tests cover:
- _JsonFormatter structured output with context and exception fields
- get_logger() handler registration, file output, propagation
- log_context() truncation and extras
- parse_log_line() and read_log_tail()
- enable_console() mirrors records to stderr

CLI tests cover:
- argument parsing and config overrides
- speak: success, stdin, not ready, playback failure, empty input
- players: per-platform listing
- logs: formatted and raw output
- serve: builds the MCP server and runs the chosen transport
"""

from __future__ import annotations

import io
import json
import logging
import unittest.mock as mock

import pytest

from tts_reader import __main__ as cli
from tts_reader.errors import PlaybackFailure
from tts_reader.logging import (
    _JsonFormatter,
    _configured,
    enable_console,
    get_logger,
    log_context,
    parse_log_line,
    read_log_tail,
)


def _close(logger: logging.Logger) -> None:
    for h in logger.handlers[:]:
        h.close()
        logger.removeHandler(h)


# ===========================================================================
# Logging module tests
# ===========================================================================


class TestJsonFormatter:

    def setup_method(self):
        self.fmt = _JsonFormatter()

    def _make_record(self, msg="hello", level=logging.INFO, **kwargs):
        record = logging.LogRecord(
            name="tts-reader.test", level=level, pathname="test.py", lineno=1,
            msg=msg, args=(), exc_info=None,
        )
        for k, v in kwargs.items():
            setattr(record, k, v)
        return record

    def test_basic_json_output(self):
        parsed = json.loads(self.fmt.format(self._make_record("hello world")))
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "tts-reader.test"
        assert parsed["message"] == "hello world"
        assert "T" in parsed["timestamp"]

    def test_context_included(self):
        record = self._make_record(context={"chunk_index": 2})
        assert json.loads(self.fmt.format(record))["context"] == {"chunk_index": 2}

    def test_empty_context_not_included(self):
        assert "context" not in json.loads(self.fmt.format(self._make_record(context={})))

    def test_exception_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            import sys
            record = self._make_record(exc_info=sys.exc_info())
        parsed = json.loads(self.fmt.format(record))
        assert "ValueError: boom" in parsed["exception"]

    def test_non_serializable_context(self):
        record = self._make_record(context={"path": object()})
        assert "path" in json.loads(self.fmt.format(record))["context"]


class TestGetLogger:

    def setup_method(self):
        self._saved_configured = _configured.copy()

    def teardown_method(self):
        _configured.clear()
        _configured.update(self._saved_configured)

    def test_idempotent_handler_registration(self, tmp_path):
        log_file = str(tmp_path / "a.log")
        logger = get_logger("test.tts.idempotent", log_file)
        get_logger("test.tts.idempotent", log_file)
        assert len(logger.handlers) == 1
        _close(logger)

    def test_writes_json_with_context(self, tmp_path):
        log_file = tmp_path / "b.log"
        logger = get_logger("test.tts.write", str(log_file))
        logger.warning("chunk %d failed", 3,
                       extra={"context": log_context(chunk_index=3, text_preview="Hello")})
        _close(logger)
        entry = json.loads(log_file.read_text().strip())
        assert entry["message"] == "chunk 3 failed"
        assert entry["level"] == "WARNING"
        assert entry["context"] == {"chunk_index": 3, "text_preview": "Hello"}

    def test_propagates_to_package_logger(self, tmp_path):
        logger = get_logger("tts-reader.test-prop", str(tmp_path / "c.log"))
        assert logger.propagate is True
        _close(logger)

    def test_unwritable_log_file_still_returns_logger(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        logger = get_logger("test.tts.unwritable", str(blocker / "sub" / "x.log"))
        assert isinstance(logger, logging.Logger)
        logger.info("does not raise")


class TestEnableConsole:

    def test_mirrors_to_stderr(self, capsys):
        root = logging.getLogger("tts-reader")
        before = list(root.handlers)
        try:
            enable_console(logging.INFO)
            logging.getLogger("tts-reader.console-test").info("to the console")
            assert "INFO: to the console" in capsys.readouterr().err
        finally:
            for h in root.handlers[:]:
                if h not in before:
                    root.removeHandler(h)


class TestLogContext:

    def test_empty(self):
        assert log_context() == {}

    def test_text_preview_truncated(self):
        assert log_context(text_preview="x" * 200)["text_preview"] == "x" * 80

    def test_duration_rounded(self):
        assert log_context(duration_ms=12.345)["duration_ms"] == 12.3

    def test_chunk_index_zero_kept(self):
        assert log_context(chunk_index=0) == {"chunk_index": 0}

    def test_extra_kwargs(self):
        assert log_context(platform="linux") == {"platform": "linux"}


class TestParseLogLine:

    def test_valid_json(self):
        assert parse_log_line('{"level": "INFO"}') == {"level": "INFO"}

    def test_non_json_line(self):
        assert parse_log_line("plain text") is None

    def test_blank(self):
        assert parse_log_line("   ") is None


class TestReadLogTail:

    def test_reads_last_n_lines(self, tmp_path):
        p = tmp_path / "t.log"
        p.write_text("\n".join(f"line {i}" for i in range(10)) + "\n")
        assert read_log_tail(str(p), 3) == ["line 7", "line 8", "line 9"]

    def test_missing_file(self, tmp_path):
        assert read_log_tail(str(tmp_path / "missing.log")) == []

    def test_empty_file(self, tmp_path):
        p = tmp_path / "e.log"
        p.write_text("")
        assert read_log_tail(str(p)) == []


# ===========================================================================
# CLI tests
# ===========================================================================


@pytest.fixture
def no_user_config(tmp_path, monkeypatch):
    """Run the CLI in an empty dir with no user config."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("tts_reader.config.DEFAULT_CONFIG_FILE", str(tmp_path / "none.yml"))
    return tmp_path


@pytest.fixture
def engine(no_user_config):
    with mock.patch.object(cli, "TtsEngine") as engine_cls:
        instance = engine_cls.return_value
        instance.init.return_value = True
        instance.speak.return_value = "completed"
        yield instance


class TestArgParsing:

    def test_speak_args(self):
        args = cli.build_parser().parse_args(
            ["speak", "hello", "world", "--voice", "bf_emma", "--speed", "1.5", "--workers", "0"])
        assert args.text == ["hello", "world"]
        assert args.voice == "bf_emma"
        assert args.speed == 1.5
        assert args.workers == 0

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_bad_backend_rejected(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["speak", "x", "--backend", "cloud"])

    def test_overrides_are_clamped(self, no_user_config):
        args = cli.build_parser().parse_args(
            ["speak", "x", "--backend", "http", "--speed", "9", "--workers", "99"])
        cfg = cli._load_config(args)
        assert cfg.backend == "http"
        assert cfg.speed == 2.0
        assert cfg.max_workers == 8


class TestSpeakCommand:

    def test_success(self, engine):
        assert cli.main(["speak", "**Hello.**", "World!"]) == 0
        text, cfg = engine.speak.call_args[0]
        assert text == "Hello. World!"
        assert cfg.enabled is True
        engine.cancel.assert_called_once()

    def test_reads_stdin(self, engine, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("From a pipe.\n"))
        assert cli.main(["speak"]) == 0
        assert engine.speak.call_args[0][0] == "From a pipe."

    def test_empty_input(self, engine, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO(""))
        assert cli.main(["speak"]) == 1
        assert "Nothing to speak" in capsys.readouterr().err
        engine.speak.assert_not_called()

    def test_backend_not_ready(self, engine, capsys):
        engine.init.return_value = False
        assert cli.main(["speak", "Hello."]) == 1
        assert "not available" in capsys.readouterr().err
        engine.speak.assert_not_called()

    def test_playback_failure(self, engine, capsys):
        engine.speak.side_effect = PlaybackFailure(["paplay", "aplay"], "sudo apt install alsa-utils")
        assert cli.main(["speak", "Hello."]) == 1
        err = capsys.readouterr().err
        assert "All audio players failed: paplay, aplay" in err
        assert "sudo apt install alsa-utils" in err
        engine.cancel.assert_called_once()

    def test_non_completed_outcome(self, engine):
        engine.speak.return_value = "superseded"
        assert cli.main(["speak", "Hello."]) == 1


class TestPlayersCommand:

    def test_lists_darwin_players(self, capsys):
        assert cli.main(["players", "--platform", "darwin"]) == 0
        out = capsys.readouterr().out
        assert "darwin" in out
        assert out.index("afplay") < out.index("ffplay")


class TestLogsCommand:

    def test_formats_json_lines(self, tmp_path, capsys):
        p = tmp_path / "x.log"
        p.write_text(json.dumps({"timestamp": "2026-01-01T00:00:00.000", "level": "INFO",
                                 "logger": "tts-reader.pool", "message": "pool shutdown"})
                     + "\nnot json\n")
        assert cli.main(["logs", "--file", str(p)]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert "tts-reader.pool: pool shutdown" in lines[0]
        assert lines[1] == "not json"

    def test_raw(self, tmp_path, capsys):
        p = tmp_path / "x.log"
        p.write_text('{"message": "m"}\n')
        cli.main(["logs", "--file", str(p), "--raw"])
        assert capsys.readouterr().out.strip() == '{"message": "m"}'


class TestServeCommand:

    def test_runs_transport(self, engine):
        with mock.patch("tts_reader.server.create_mcp_server") as create:
            assert cli.main(["serve", "--transport", "streamable-http", "--port", "9000"]) == 0
        reader = create.call_args[0][0]
        assert reader.engine is engine
        assert create.call_args[1] == {"host": "127.0.0.1", "port": 9000}
        create.return_value.run.assert_called_once_with(transport="streamable-http")
        engine.cancel.assert_called_once()
        engine.init.assert_not_called()
