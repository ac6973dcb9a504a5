"""User-facing notifications for tts-reader.

The pipeline reports a few things a user may want to act on: every audio
player failed (install something), the backend came up or could not be
reached, TTS was toggled.  Anything with a ``notify(title, message,
variant, event_type)`` method can receive them.  Notifications are never
part of control flow, so a missing or failing notifier changes nothing.

Channels are configured in config.yml:

```yaml
notifications:
  enabled: true
  cooldownSecs: 30          # min gap between identical notifications
  channels:
    - name: phone
      type: ntfy            # ntfy or webhook
      url: https://ntfy.sh/my-tts-reader
      priority: 4
      events: [playback_failed, backend_unavailable]
    - name: custom
      type: webhook
      url: https://example.com/hook
      headers:
        Authorization: "Bearer ${WEBHOOK_TOKEN}"
      events: [all]
```

Event types:
    playback_failed      No audio player could play a file
    backend_ready        The synthesis backend finished loading
    backend_unavailable  The synthesis backend failed to load or is unreachable
    tts_toggled          Reading was turned on or off
    all                  Catch-all: receive every event type
"""

from __future__ import annotations

import json
import threading
import time
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Protocol

from .logging import get_logger

log = get_logger("tts-reader.notifications")


ALL_EVENT_TYPES = frozenset({
    "playback_failed",
    "backend_ready",
    "backend_unavailable",
    "tts_toggled",
})

_VARIANT_PRIORITY = {"info": 2, "success": 2, "warning": 3, "error": 4}


class Notifier(Protocol):
    def notify(self, title: str, message: str, variant: str = "info",
               event_type: str = "") -> None:
        ...


class LogNotifier:
    """Notifier that only writes to the log."""

    def notify(self, title: str, message: str, variant: str = "info",
               event_type: str = "") -> None:
        level = {"error": 40, "warning": 30}.get(variant, 20)
        log.log(level, "%s: %s", title, message, extra={"context": {"event_type": event_type}})


@dataclass
class NotificationEvent:
    event_type: str
    title: str
    message: str
    variant: str = "info"       # info, success, warning, error
    priority: int = 3           # 1 (min) to 5 (max), used by ntfy
    tags: list[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)


@dataclass
class NotificationChannel:
    name: str
    channel_type: str           # "ntfy" or "webhook"
    url: str
    events: list[str] = field(default_factory=lambda: ["all"])
    priority: int = 3
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)

    def accepts_event(self, event_type: str) -> bool:
        return "all" in self.events or event_type in self.events


class NotificationDispatcher:
    """Sends notifications to configured channels in background threads.

    Every notification is also logged.  Identical (channel, event type)
    pairs are rate-limited by ``cooldown_secs``.
    """

    def __init__(
        self,
        channels: list[NotificationChannel] | None = None,
        cooldown_secs: float = 30.0,
        enabled: bool = True,
    ) -> None:
        self._channels = channels or []
        self._cooldown_secs = cooldown_secs
        self._enabled = enabled
        self._lock = threading.Lock()
        self._last_sent: dict[tuple[str, str], float] = {}
        self._log = LogNotifier()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    def notify(self, title: str, message: str, variant: str = "info",
               event_type: str = "") -> None:
        self._log.notify(title, message, variant, event_type)
        self.dispatch(NotificationEvent(
            event_type=event_type or "all",
            title=title,
            message=message,
            variant=variant,
            priority=_VARIANT_PRIORITY.get(variant, 3),
        ))

    def dispatch(self, event: NotificationEvent) -> None:
        """Send *event* to every matching channel. Non-blocking."""
        if not self._enabled or not self._channels:
            return

        now = time.time()
        for channel in self._channels:
            if not channel.accepts_event(event.event_type):
                continue

            key = (channel.name, event.event_type)
            with self._lock:
                last = self._last_sent.get(key, 0.0)
                if now - last < self._cooldown_secs:
                    log.debug("Notification cooldown: %s/%s", channel.name, event.event_type)
                    continue
                self._last_sent[key] = now

            threading.Thread(
                target=self._send,
                args=(channel, event),
                daemon=True,
            ).start()

    def _send(self, channel: NotificationChannel, event: NotificationEvent) -> None:
        try:
            if channel.channel_type == "ntfy":
                self._send_ntfy(channel, event)
            elif channel.channel_type == "webhook":
                self._send_webhook(channel, event)
            else:
                log.warning("Unknown channel type: %s", channel.channel_type)
        except Exception as exc:
            log.error("Notification send failed for %s/%s: %s",
                      channel.name, channel.channel_type, exc)

    def _send_ntfy(self, channel: NotificationChannel, event: NotificationEvent) -> None:
        headers = {
            "Title": event.title,
            "Priority": str(event.priority or channel.priority),
        }
        if event.tags:
            headers["Tags"] = ",".join(event.tags)
        headers.update(channel.headers)

        req = urllib.request.Request(
            channel.url,
            data=event.message.encode("utf-8"),
            headers=headers,
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=10) as resp:
            log.debug("ntfy response: %s", resp.status)

    def _send_webhook(self, channel: NotificationChannel, event: NotificationEvent) -> None:
        payload = json.dumps({
            "event_type": event.event_type,
            "title": event.title,
            "message": event.message,
            "variant": event.variant,
            "priority": event.priority,
            "tags": event.tags,
            "timestamp": event.timestamp,
        }).encode("utf-8")

        headers = {"Content-Type": "application/json"}
        headers.update(channel.headers)

        req = urllib.request.Request(
            channel.url,
            data=payload,
            headers=headers,
            method=channel.method,
        )
        with urllib.request.urlopen(req, timeout=10) as resp:
            log.debug("Webhook response: %s", resp.status)

    def clear_cooldowns(self) -> None:
        with self._lock:
            self._last_sent.clear()


def channels_from_config(config_channels: list[dict]) -> list[NotificationChannel]:
    """Build channels from raw config dicts, skipping invalid entries."""
    channels = []
    for ch in config_channels:
        if not isinstance(ch, dict):
            log.warning("Notification channel entry is not a mapping, skipping")
            continue
        name = ch.get("name", "unnamed")
        url = ch.get("url", "")
        if not url:
            log.warning("Notification channel '%s' has no URL, skipping", name)
            continue
        channels.append(NotificationChannel(
            name=name,
            channel_type=ch.get("type", "webhook"),
            url=url,
            events=ch.get("events", ["all"]),
            priority=ch.get("priority", 3),
            method=ch.get("method", "POST"),
            headers=ch.get("headers", {}),
        ))
    return channels


def create_dispatcher(notifications: dict[str, Any] | None) -> NotificationDispatcher:
    """Create a dispatcher from the ``notifications`` config section.

    Returns a log-only dispatcher when notifications are not configured.
    """
    notifications = notifications or {}
    enabled = bool(notifications.get("enabled", False))
    cooldown = float(notifications.get("cooldownSecs", 30))
    raw_channels = notifications.get("channels") or []
    channels = channels_from_config(raw_channels) if raw_channels else []

    if enabled and not channels:
        log.info("Notifications enabled but no channels configured")
        enabled = False

    return NotificationDispatcher(channels=channels, cooldown_secs=cooldown, enabled=enabled)
