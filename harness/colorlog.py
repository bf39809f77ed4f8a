"""Colored console output shared by the harness and target scripts."""

from __future__ import annotations

import json
import logging
import sys
from typing import IO

import typer

BACKGROUNDS: dict[str, str] = {
    "W": "white",
    "G": "green",
    "R": "red",
    "B": "blue",
    "Y": "yellow",
}

TEXT_COLORS: dict[str, str] = {
    "W": "white",
    "G": "green",
    "R": "red",
    "B": "black",
    "Y": "yellow",
}

MAX_LIST_ITEMS = 100


def _format_part(text: object) -> str:
    if isinstance(text, (list, tuple)):
        items = [
            json.dumps(item, indent=2, default=str) if isinstance(item, (dict, list)) else str(item)
            for item in list(text)[:MAX_LIST_ITEMS]
        ]
        return f"[{', '.join(items)}]"
    if isinstance(text, dict):
        return json.dumps(text, indent=2, default=str)
    return str(text)


class ColorLog:
    """Stateless colored writer. Each part is styled separately, one line per call."""

    @staticmethod
    def render(bg: str, fg: str, *texts: object) -> str:
        return "".join(
            typer.style(_format_part(text), fg=TEXT_COLORS[fg], bg=BACKGROUNDS[bg])
            for text in texts
        )

    @classmethod
    def log(cls, bg: str, fg: str, *texts: object, stream: IO[str] | None = None) -> None:
        if bg == fg:
            sys.stderr.write(
                f"Invalid color combination: background and text cannot be the same color ({bg})\n"
            )
            return
        out = stream or sys.stdout
        out.write(cls.render(bg, fg, *texts) + "\n")
        out.flush()

    @classmethod
    def WB(cls, *texts: object) -> None:
        cls.log("W", "B", *texts)

    @classmethod
    def WG(cls, *texts: object) -> None:
        cls.log("W", "G", *texts)

    @classmethod
    def WR(cls, *texts: object) -> None:
        cls.log("W", "R", *texts)

    @classmethod
    def WY(cls, *texts: object) -> None:
        cls.log("W", "Y", *texts)

    @classmethod
    def GB(cls, *texts: object) -> None:
        cls.log("G", "B", *texts)

    @classmethod
    def GW(cls, *texts: object) -> None:
        cls.log("G", "W", *texts)

    @classmethod
    def GR(cls, *texts: object) -> None:
        cls.log("G", "R", *texts)

    @classmethod
    def GY(cls, *texts: object) -> None:
        cls.log("G", "Y", *texts)

    @classmethod
    def RB(cls, *texts: object) -> None:
        cls.log("R", "B", *texts)

    @classmethod
    def RW(cls, *texts: object) -> None:
        cls.log("R", "W", *texts)

    @classmethod
    def RG(cls, *texts: object) -> None:
        cls.log("R", "G", *texts)

    @classmethod
    def RY(cls, *texts: object) -> None:
        cls.log("R", "Y", *texts)

    @classmethod
    def BW(cls, *texts: object) -> None:
        cls.log("B", "W", *texts)

    @classmethod
    def BG(cls, *texts: object) -> None:
        cls.log("B", "G", *texts)

    @classmethod
    def BY(cls, *texts: object) -> None:
        cls.log("B", "Y", *texts)

    @classmethod
    def YB(cls, *texts: object) -> None:
        cls.log("Y", "B", *texts)

    @classmethod
    def YW(cls, *texts: object) -> None:
        cls.log("Y", "W", *texts)

    @classmethod
    def YG(cls, *texts: object) -> None:
        cls.log("Y", "G", *texts)

    @classmethod
    def YR(cls, *texts: object) -> None:
        cls.log("Y", "R", *texts)


_LEVEL_COLORS: list[tuple[int, str]] = [
    (logging.ERROR, "RW"),
    (logging.WARNING, "YB"),
    (logging.INFO, "BW"),
    (logging.NOTSET, "WB"),
]


class ColorLogHandler(logging.Handler):
    """Render log records through ColorLog.

    A record may pick its own colors with ``extra={"color": "GW"}``.
    """

    def __init__(self, stream: IO[str] | None = None, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.stream = stream

    def color_for(self, record: logging.LogRecord) -> str:
        color = getattr(record, "color", None)
        if isinstance(color, str) and len(color) == 2:
            return color
        for threshold, pair in _LEVEL_COLORS:
            if record.levelno >= threshold:
                return pair
        return "WB"

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            pair = self.color_for(record)
            ColorLog.log(pair[0], pair[1], message, stream=self.stream or sys.stdout)
        except Exception:  # noqa: BLE001 - logging must never raise
            self.handleError(record)


def setup_logging(verbose: bool = False, stream: IO[str] | None = None) -> logging.Logger:
    """Install a single ColorLogHandler on the root logger."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, ColorLogHandler):
            root.removeHandler(handler)
    handler = ColorLogHandler(stream=stream)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    return root
