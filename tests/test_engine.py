"""Tests for backend routing in TtsEngine."""

from __future__ import annotations

import unittest.mock as mock

import pytest

from tts_reader.config import TtsConfig
from tts_reader.engine import INSTALL_HINT, TtsEngine


@pytest.fixture
def parts():
    return mock.Mock(), mock.Mock(), mock.Mock(), mock.Mock()


def _engine(parts) -> TtsEngine:
    notifier, player, local, http = parts
    return TtsEngine(notifier=notifier, player=player, local=local, http=http)


class TestRouting:

    def test_local_speak(self, parts):
        engine = _engine(parts)
        cfg = TtsConfig(backend="local")
        parts[2].speak.return_value = "completed"
        assert engine.speak("hi", cfg) == "completed"
        parts[2].speak.assert_called_once_with("hi", cfg)
        parts[3].speak.assert_not_called()

    def test_http_speak(self, parts):
        engine = _engine(parts)
        cfg = TtsConfig(backend="http")
        engine.speak("hi", cfg)
        parts[3].speak.assert_called_once_with("hi", cfg)
        parts[2].speak.assert_not_called()

    def test_is_ready(self, parts):
        engine = _engine(parts)
        parts[2].is_ready.return_value = False
        parts[3].ready = True
        assert engine.is_ready(TtsConfig(backend="local")) is False
        assert engine.is_ready(TtsConfig(backend="http")) is True

    def test_cancel_local_shuts_down(self, parts):
        _engine(parts).cancel(TtsConfig(backend="local"))
        parts[2].cancel.assert_called_once()
        parts[3].interrupt.assert_not_called()

    def test_cancel_http_only_stops_player(self, parts):
        _engine(parts).cancel(TtsConfig(backend="http"))
        parts[3].interrupt.assert_called_once()
        parts[2].cancel.assert_not_called()

    def test_interrupt_local_keeps_pool(self, parts):
        _engine(parts).interrupt(TtsConfig(backend="local"))
        parts[2].interrupt.assert_called_once()
        parts[2].cancel.assert_not_called()

    def test_backends_share_player_by_default(self):
        engine = TtsEngine()
        assert engine.local.player is engine.player
        assert engine.http.player is engine.player


class TestInit:

    def test_local_ready_notifies(self, parts):
        parts[2].init.return_value = True
        assert _engine(parts).init(TtsConfig(backend="local", speak_on="idle")) is True
        parts[0].notify.assert_called_once_with(
            "TTS Reader", "Local (CPU) backend ready (on-idle)", "success",
            event_type="backend_ready")

    def test_local_failure_suggests_install(self, parts):
        parts[2].init.return_value = False
        assert _engine(parts).init(TtsConfig(backend="local")) is False
        args, kwargs = parts[0].notify.call_args
        assert args[1] == INSTALL_HINT
        assert kwargs["event_type"] == "backend_unavailable"

    def test_http_failure_names_url(self, parts):
        parts[3].check_server.return_value = False
        _engine(parts).init(TtsConfig(backend="http", http_url="http://gpu:8880"))
        message = parts[0].notify.call_args[0][1]
        assert "http://gpu:8880" in message
        assert "docker run" in message

    def test_broken_notifier_ignored(self, parts):
        parts[0].notify.side_effect = RuntimeError("down")
        parts[2].init.return_value = True
        assert _engine(parts).init(TtsConfig()) is True

    def test_no_notifier(self):
        local = mock.Mock()
        local.init.return_value = True
        engine = TtsEngine(player=mock.Mock(), local=local, http=mock.Mock())
        assert engine.init(TtsConfig()) is True
