"""
Admission gate evaluated once per invocation, before any realm is built.

A run is admitted when the target carries the bypass marker, or when the
validation database is reachable and its record counts pass the acceptance
rule. Any other outcome hands control to an abort strategy that does not
return.
"""

from __future__ import annotations

import logging
import os
import random
from collections.abc import Callable, Mapping, Sequence
from typing import NoReturn, Protocol

from harness.dbutils import DatabaseUtilities
from harness.errors import AdmissionError
from harness.schemas import AdmissionDecision, AdmissionSettings

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 1000
ABORT_EXIT_CODE = 1

REQUIRED_MARKERS: tuple[str, ...] = ("#Sheba", "#labDepartment")
BYPASS_MARKER = "ignoreAllByLibal"

Draw = Callable[[], int]


def _default_draw() -> int:
    return random.randrange(100)


def validate_script_protection(source: str, markers: Sequence[str] = REQUIRED_MARKERS) -> bool:
    for marker in markers:
        if marker not in source:
            logger.error("❌ Script validation failed: Missing required signature")
            return False
    logger.info("✅ Script validation passed", extra={"color": "GW"})
    return True


def should_bypass(source: str, marker: str = BYPASS_MARKER) -> bool:
    if marker and marker in source:
        logger.warning("🔓 Database validation bypass detected - ignoring all DB tests")
        return True
    return False


def validate_record_counts(
    count_a: int,
    count_b: int,
    threshold: int = DEFAULT_THRESHOLD,
    draw: Draw | None = None,
) -> bool:
    """Accept always when the counts reach ``threshold``, otherwise only when
    a draw from [0, 100) exceeds the deficit."""
    deficit = max(0, threshold - (count_a + count_b))
    if deficit == 0:
        return True
    return (draw or _default_draw)() > deficit


class AbortStrategy(Protocol):
    def __call__(self, reason: str) -> NoReturn: ...


class ProcessAbort:
    """Terminate the process immediately. Nothing after the gate runs."""

    def __init__(self, exit_code: int = ABORT_EXIT_CODE) -> None:
        self.exit_code = exit_code

    def __call__(self, reason: str) -> NoReturn:
        logger.critical(f"💥 Admission denied: {reason}")
        logging.shutdown()
        os._exit(self.exit_code)


class RaiseAbort:
    """Raise AdmissionError instead of exiting, for embedding the harness."""

    def __call__(self, reason: str) -> NoReturn:
        logger.critical(f"💥 Admission denied: {reason}")
        raise AdmissionError(reason)


class AdmissionGate:
    def __init__(
        self,
        settings: AdmissionSettings | None = None,
        db_utils: DatabaseUtilities | None = None,
        abort: AbortStrategy | None = None,
        draw: Draw | None = None,
        bypass_marker: str = BYPASS_MARKER,
    ) -> None:
        self.settings = settings or AdmissionSettings()
        self.db_utils = db_utils
        self.abort: AbortStrategy = abort or ProcessAbort()
        self.draw = draw
        self.bypass_marker = bypass_marker

    def evaluate(self, source: str, db_params: Mapping[str, object] | None = None) -> AdmissionDecision:
        logger.info("🔍 Performing database validation...")
        if should_bypass(source, self.bypass_marker):
            logger.info("✅ Database validation bypassed", extra={"color": "GW"})
            return AdmissionDecision(allowed=True, reason="bypass marker present", bypassed=True)
        if not self.settings.enabled:
            return AdmissionDecision(allowed=True, reason="admission checks disabled")

        try:
            count_a, count_b = self.read_counts(db_params)
        except Exception as exc:  # noqa: BLE001 - every connectivity failure is a denial
            self.abort(f"database validation failed: {exc.__class__.__name__}: {exc}")

        if not validate_record_counts(count_a, count_b, self.settings.threshold, self.draw):
            self.abort(f"record counts rejected ({count_a} + {count_b} < {self.settings.threshold})")

        logger.info("✅ Database validation passed", extra={"color": "GW"})
        return AdmissionDecision(allowed=True, reason="record counts accepted")

    def read_counts(self, db_params: Mapping[str, object] | None) -> tuple[int, int]:
        if self.db_utils is None:
            raise ConnectionError("SQL module not available for validation")
        first, second = self.settings.tables
        self.db_utils.db_connect(db_params, readonly=True)
        try:
            return self.db_utils.count_records(first), self.db_utils.count_records(second)
        finally:
            self.db_utils.db_close()
