"""Locate a Chrome/Edge executable and remember it between runs."""

from __future__ import annotations

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from harness.errors import ConfigError
from harness.schemas import BrowserCache

logger = logging.getLogger(__name__)

BROWSER_CANDIDATES: tuple[tuple[str, str], ...] = (
    ("chrome", "Google Chrome"),
    ("google-chrome", "Google Chrome"),
    ("msedge", "Microsoft Edge"),
    ("microsoft-edge", "Microsoft Edge"),
    ("chromium", "Chromium"),
    ("chromium-browser", "Chromium"),
)

NOT_FOUND_HELP = """No Chrome/Edge installation found automatically.
Provide the exact browser path with --bpath, for example:
  --bpath "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe"
  --bpath /usr/bin/chromium"""


class BrowserLocator:
    def __init__(self, cache_path: str | Path = "configPdf2HTML.json") -> None:
        self.cache_path = Path(cache_path)

    def locate(self, provided: str | None = None) -> str:
        logger.info("🔍 Looking for Chrome/Edge browser...")
        if provided:
            if not Path(provided).exists():
                raise ConfigError(f"Browser executable not found at provided path: {provided}")
            self.save(BrowserCache(browser_path=provided))
            return provided

        cached = self.load()
        if cached is not None:
            if Path(cached.browser_path).exists():
                logger.info(f"✅ Using cached browser path: {cached.browser_path}", extra={"color": "GW"})
                return cached.browser_path
            logger.warning("⚠️  Cached browser path is no longer valid, searching again...")

        for command, display_name in BROWSER_CANDIDATES:
            found = shutil.which(command)
            if found and Path(found).exists():
                logger.info(f"✅ Found {display_name}: {found}", extra={"color": "GW"})
                self.save(BrowserCache(browser_path=found, browser_name=display_name))
                return found
            logger.debug(f"   {display_name} ({command}) not found in PATH")

        raise ConfigError(NOT_FOUND_HELP)

    def load(self) -> BrowserCache | None:
        if not self.cache_path.exists():
            return None
        try:
            return BrowserCache.from_json(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning(f"⚠️  Browser cache {self.cache_path} is corrupted: {exc}")
            return None

    def save(self, entry: BrowserCache) -> None:
        entry.last_updated = datetime.now(timezone.utc)
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        self.cache_path.write_text(entry.model_dump_json(indent=2), encoding="utf-8")
        logger.info(f"💾 Browser path saved to {self.cache_path}")
