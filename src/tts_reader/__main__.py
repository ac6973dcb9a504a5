"""
tts-reader: read text aloud with streaming Kokoro synthesis.

Usage:
    tts-reader speak "Hello. World!"        # speak text (or pipe it on stdin)
    tts-reader speak --workers 0 < notes.md # generate and play one chunk at a time
    tts-reader players                      # audio players tried on this platform
    tts-reader serve                        # MCP server over stdio
    tts-reader serve --transport streamable-http --port 8445
    tts-reader logs -n 100                  # tail the structured log
"""

from __future__ import annotations

import argparse
import shutil
import sys

from .config import BACKENDS, MAX_SPEED, MAX_WORKERS, MIN_SPEED, TtsConfig
from .coordinator import COMPLETED
from .engine import TtsEngine
from .errors import PlaybackFailure
from .logging import DEFAULT_LOG_FILE, enable_console, get_logger, parse_log_line, read_log_tail
from .notifications import create_dispatcher
from .players import player_candidates
from .reader import Reader, clean_text

log = get_logger("tts-reader.main")


def _load_config(args: argparse.Namespace) -> TtsConfig:
    cfg = TtsConfig.load(args.config)
    if args.backend:
        cfg.backend = args.backend
    if args.voice:
        cfg.voice = args.voice
    if args.speed is not None:
        cfg.speed = max(MIN_SPEED, min(MAX_SPEED, args.speed))
    if args.workers is not None:
        cfg.max_workers = max(0, min(MAX_WORKERS, args.workers))
    for warning in cfg.validation_warnings:
        print(f"  config: {warning}", file=sys.stderr)
    log.info("config loaded: %s", cfg.summary())
    return cfg


def _build_engine(cfg: TtsConfig) -> TtsEngine:
    return TtsEngine(notifier=create_dispatcher(cfg.notifications))


# ─── Subcommands ─────────────────────────────────────────────────

def _run_speak(args: argparse.Namespace) -> int:
    text = " ".join(args.text) if args.text else ""
    if not text and not sys.stdin.isatty():
        text = sys.stdin.read()
    text = clean_text(text)
    if not text:
        print("Nothing to speak", file=sys.stderr)
        return 1

    cfg = _load_config(args)
    cfg.enabled = True
    engine = _build_engine(cfg)
    if not engine.init(cfg):
        print(f"  TTS backend '{cfg.backend}' is not available (see {DEFAULT_LOG_FILE})",
              file=sys.stderr)
        return 1

    try:
        outcome = engine.speak(text, cfg)
    except PlaybackFailure as e:
        print(f"  {e}", file=sys.stderr)
        print(f"  {e.help_message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        outcome = "interrupted"
    finally:
        engine.cancel(cfg)

    if outcome != COMPLETED:
        print(f"  speak: {outcome}", file=sys.stderr)
    return 0 if outcome == COMPLETED else 1


def _run_players(args: argparse.Namespace) -> int:
    platform = args.platform or sys.platform
    print(f"Audio players for {platform} (in order):")
    for candidate in player_candidates(platform, "<file>"):
        found = "✔" if shutil.which(candidate.command[0]) else "✘"
        print(f"  {found} {candidate.name:<22} {' '.join(candidate.command)}")
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    from .server import create_mcp_server

    cfg = _load_config(args)
    engine = _build_engine(cfg)
    reader = Reader(cfg, engine)
    if cfg.enabled:
        engine.init(cfg)

    server = create_mcp_server(reader, host=args.host, port=args.port)
    log.info("mcp server starting (%s)", args.transport)
    try:
        server.run(transport=args.transport)
    finally:
        engine.cancel(cfg)
    return 0


def _run_logs(args: argparse.Namespace) -> int:
    for line in read_log_tail(args.file, args.lines):
        entry = None if args.raw else parse_log_line(line)
        if entry is None:
            print(line)
            continue
        print(f"{entry.get('timestamp', '')} {entry.get('level', ''):<7} "
              f"{entry.get('logger', '')}: {entry.get('message', '')}")
        if entry.get("context"):
            print(f"    {entry['context']}")
    return 0


# ─── Main entry point ────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, metavar="PATH",
                        help="Config file (default: ~/.config/tts-reader/config.yml)")
    common.add_argument("--backend", choices=BACKENDS, default=None)
    common.add_argument("--voice", default=None, help="Kokoro voice, e.g. af_heart")
    common.add_argument("--speed", type=float, default=None,
                        help=f"Speech speed ({MIN_SPEED}-{MAX_SPEED})")
    common.add_argument("--workers", type=int, default=None,
                        help=f"Synthesis workers (0 = in-process, max {MAX_WORKERS})")
    common.add_argument("--verbose", "-v", action="store_true",
                        help="Also log to stderr")

    parser = argparse.ArgumentParser(
        prog="tts-reader",
        description="Read text aloud with streaming Kokoro synthesis",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("speak", parents=[common], help="Speak text (args or stdin)")
    p.add_argument("text", nargs="*", help="Text to speak (all args joined with spaces)")
    p.set_defaults(func=_run_speak)

    p = sub.add_parser("players", parents=[common], help="List audio players for this platform")
    p.add_argument("--platform", default=None, help="e.g. linux, darwin, win32")
    p.set_defaults(func=_run_players)

    p = sub.add_parser("serve", parents=[common], help="Run the MCP server")
    p.add_argument("--transport", choices=["stdio", "streamable-http"], default="stdio")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8445)
    p.set_defaults(func=_run_serve)

    p = sub.add_parser("logs", parents=[common], help="Show the end of the log file")
    p.add_argument("-n", "--lines", type=int, default=50)
    p.add_argument("--file", default=DEFAULT_LOG_FILE)
    p.add_argument("--raw", action="store_true", help="Print JSON lines unformatted")
    p.set_defaults(func=_run_logs)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        enable_console()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
