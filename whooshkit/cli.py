from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import IO

import numpy as np
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn, TimeRemainingColumn
from rich.text import Text
from rich.traceback import Traceback

from .config import EngineConfig, WhooshSettings, dump_settings, load_settings
from .engine import WhooshEngine
from .logging_utils import configure_logging, get_log_path, log_exception
from .presets import default_settings, get_preset, list_presets, randomize_settings, suggest_filename

_LOGGER = logging.getLogger("whooshkit.cli")
_CONSOLE = Console()
_POLL_SECONDS = 0.05


def render_error(context: str, exc: BaseException, *, stream: IO[str] | None = None) -> None:
    target = stream or sys.stderr
    console = Console(file=target)
    body = Text.assemble(
        ("whooshkit error while ", "bold"),
        (context, "bold"),
        (":\n\n", "bold"),
        (type(exc).__name__, "bold red"),
        (": ", "bold"),
        str(exc),
        (f"\nLogs: {get_log_path()}", "dim"),
        ("\n\nSet WHOOSHKIT_DEBUG=1 for console trace.", "dim"),
    )
    console.print(Panel(body, title="Error", border_style="red"))
    if os.environ.get("WHOOSHKIT_DEBUG"):
        console.print(Traceback.from_exception(type(exc), exc, exc.__traceback__))


def _load_input(args: argparse.Namespace) -> WhooshSettings:
    if getattr(args, "settings", None):
        return load_settings(Path(args.settings).read_text(encoding="utf-8"))
    if getattr(args, "preset", None):
        return get_preset(args.preset)
    return default_settings()


def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--preset", type=str, help="Preset name (see `whooshkit presets`).")
    source.add_argument("--settings", type=str, help="Path to a settings JSON file.")
    parser.add_argument("--seed", type=int, default=None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="whooshkit")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("presets", help="List the built-in presets.")

    render = sub.add_parser("render", help="Render a whoosh to a 24-bit WAV file.")
    _add_source_arguments(render)
    render.add_argument("--output", type=str, default=None)
    render.add_argument("--sample-rate", type=int, choices=[44_100, 48_000], default=None)

    play = sub.add_parser("play", help="Play a whoosh on the default output device.")
    _add_source_arguments(play)

    randomize = sub.add_parser("randomize", help="Print randomized settings JSON.")
    randomize.add_argument("--preset", type=str, default=None)
    randomize.add_argument("--seed", type=int, default=None)
    randomize.add_argument("--output", type=str, default=None)
    return parser


def _play(engine: WhooshEngine, settings: WhooshSettings, seed: int | None) -> None:
    engine.play(settings, seed=seed)
    try:
        with Progress(
            TextColumn("[bold]Playing"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TimeRemainingColumn(),
            console=_CONSOLE,
            transient=True,
        ) as progress:
            task = progress.add_task("play", total=1.0)
            while not engine.wait(_POLL_SECONDS):
                progress.update(task, completed=engine.progress)
            progress.update(task, completed=1.0)
    except KeyboardInterrupt:
        _CONSOLE.print("Stopped.")
    finally:
        engine.stop()


def _failure_details(args: argparse.Namespace) -> dict[str, object]:
    return {
        "command": args.command,
        "preset": getattr(args, "preset", None),
        "settings": getattr(args, "settings", None),
        "seed": getattr(args, "seed", None),
        "sample_rate": getattr(args, "sample_rate", None),
    }


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    details: dict[str, object] = {}
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        details = _failure_details(args)

        if args.command == "presets":
            for name in list_presets():
                _CONSOLE.print(name)
            return 0

        if args.command == "render":
            settings = _load_input(args)
            config = EngineConfig.from_env()
            if args.sample_rate is not None:
                config = config.model_copy(update={"encoding_sample_rate": args.sample_rate})
            with WhooshEngine(config) as engine:
                data = engine.render(settings, seed=args.seed)
            path = Path(args.output or suggest_filename())
            path.write_bytes(data)
            _CONSOLE.print(f"Wrote {path} ({len(data)} bytes, sr={config.encoding_sample_rate})")
            return 0

        if args.command == "play":
            settings = _load_input(args)
            with WhooshEngine(EngineConfig.from_env()) as engine:
                _play(engine, settings, args.seed)
            return 0

        if args.command == "randomize":
            base = get_preset(args.preset) if args.preset else default_settings()
            rng = np.random.default_rng(args.seed)
            text = dump_settings(randomize_settings(base, rng))
            if args.output:
                Path(args.output).write_text(text + "\n", encoding="utf-8")
                _CONSOLE.print(f"Wrote settings to {args.output}")
            else:
                print(text)
            return 0

        parser.print_help()
        return 1
    except Exception as exc:
        debug = bool(os.environ.get("WHOOSHKIT_DEBUG"))
        _LOGGER.warning("whooshkit CLI failed: %s", exc, exc_info=debug)
        log_exception("whooshkit CLI", exc, details=details)
        render_error("whooshkit CLI", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
