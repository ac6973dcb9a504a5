"""MCP server for tts-reader.

Exposes the reader to MCP clients so an agent can speak text, stop
playback and toggle reading, and so a host can feed assistant message
events in (``message_event``) for the speakOn modes.  All blocking work
runs in the default executor; the event loop only waits.
"""

from __future__ import annotations

import asyncio
import functools
import json
from typing import TYPE_CHECKING

from mcp.server.fastmcp import FastMCP

from .errors import PlaybackFailure
from .logging import get_logger
from .reader import clean_text

if TYPE_CHECKING:
    from .reader import Reader

log = get_logger("tts-reader.server")


def _preview(text: str, limit: int = 100) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def create_mcp_server(reader: "Reader", host: str = "127.0.0.1", port: int = 8445) -> FastMCP:
    """Create the MCP server with the speak/stop/toggle/message/status tools.

    Args:
        reader: Reader holding the config and the TTS engine.
        host: Bind address for the streamable-http transport.
        port: Port for the streamable-http transport.

    Returns:
        Configured FastMCP server ready to run.
    """
    server = FastMCP("tts-reader", host=host, port=port)
    engine = reader.engine

    def _safe_tool(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                err_msg = f"{type(exc).__name__}: {str(exc)[:200]}"
                log.error("Tool %s failed: %s", fn.__name__, err_msg, exc_info=True)
                return json.dumps({"error": err_msg, "tool": fn.__name__})
        return wrapper

    # ─── Tools ────────────────────────────────────────────────────────

    @server.tool()
    @_safe_tool
    async def speak(text: str) -> str:
        """Speak text aloud and block until playback finishes.

        Markdown is stripped and fenced code is read as "code block".
        Long text is split into chunks and starts playing as soon as the
        first chunk is ready.

        Parameters
        ----------
        text:
            The text to speak.

        Returns
        -------
        str
            JSON string: {"outcome": ..., "spoke": "preview"}
        """
        cleaned = clean_text(text)
        loop = asyncio.get_running_loop()
        try:
            outcome = await loop.run_in_executor(None, engine.speak, cleaned, reader.config)
        except PlaybackFailure as e:
            return json.dumps({"outcome": "failed", "error": str(e), "help": e.help_message})
        return json.dumps({"outcome": outcome, "spoke": _preview(cleaned)})

    @server.tool()
    @_safe_tool
    async def stop() -> str:
        """Stop any in-progress speech immediately.

        The synthesis workers stay loaded, so the next speak starts fast.
        """
        engine.interrupt(reader.config)
        return "Stopped"

    @server.tool()
    @_safe_tool
    async def tts_toggle(state: str = "") -> str:
        """Turn reading on or off.

        Parameters
        ----------
        state:
            "on", "off", or empty to toggle.

        Returns
        -------
        str
            JSON string: {"enabled": bool}
        """
        loop = asyncio.get_running_loop()
        enabled = await loop.run_in_executor(None, reader.apply_command, state, "mcp")
        return json.dumps({"enabled": enabled})

    @server.tool()
    @_safe_tool
    async def message_event(event: str, message_id: str = "", text: str = "") -> str:
        """Report an assistant message event from the host.

        With speakOn "message" a completed message is read right away;
        with speakOn "idle" only the latest message is read, on "idle".

        Parameters
        ----------
        event:
            "updated" (message text changed), "completed" (message
            finished) or "idle" (the session went idle).
        message_id:
            Id of the message, required for "updated" and "completed".
        text:
            Latest full text of the message. Optional for "completed"
            when an "updated" event already carried it.

        Returns
        -------
        str
            JSON string: {"outcome": ...}, "ignored" when nothing was spoken
        """
        if event not in ("updated", "completed", "idle"):
            return json.dumps({"error": f"unknown event '{event}'",
                               "events": ["updated", "completed", "idle"]})
        if event != "idle" and not message_id:
            return json.dumps({"error": f"message_id is required for '{event}'"})

        if text and message_id:
            reader.on_message_updated(message_id, text)
        if event == "updated":
            return json.dumps({"outcome": "recorded"})

        handler = reader.on_idle if event == "idle" else functools.partial(
            reader.on_message_completed, message_id)
        loop = asyncio.get_running_loop()
        outcome = await loop.run_in_executor(None, handler)
        return json.dumps({"outcome": outcome or "ignored"})

    @server.tool()
    @_safe_tool
    async def tts_status() -> str:
        """Get the current TTS settings and backend readiness.

        Returns
        -------
        str
            JSON string with backend, voice, speed, workers and readiness.
        """
        config = reader.config
        return json.dumps({
            "enabled": config.enabled,
            "ready": engine.is_ready(config),
            "backend": config.backend,
            "voice": config.voice,
            "speed": config.speed,
            "max_workers": config.max_workers,
            "speak_on": config.speak_on,
            "last_player": engine.player.last_working,
            "warnings": list(config.validation_warnings),
        })

    return server
