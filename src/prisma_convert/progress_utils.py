"""Consistent progress reporting for per-product and per-band loops."""

from __future__ import annotations

import logging
import sys
from typing import Optional

logger = logging.getLogger(__name__)


def is_interactive() -> bool:
    """True when stderr is attached to a terminal."""

    stream = getattr(sys, "stderr", None)
    return bool(stream is not None and hasattr(stream, "isatty") and stream.isatty())


class ProgressReporter:
    """tqdm bar in interactive sessions, periodic log lines otherwise."""

    def __init__(
        self,
        stage_name: str,
        total_items: int,
        interactive_mode: bool,
        log_every: int = 1,
        unit: str = "product",
    ) -> None:
        self.stage_name = stage_name
        self.total = total_items
        self.interactive = interactive_mode
        self.log_every = max(1, log_every)
        self.unit = unit

        self.count = 0
        self._tqdm: Optional[object] = None

        if self.interactive:
            from tqdm import tqdm  # type: ignore[import-not-found]

            self._tqdm = tqdm(
                total=self.total,
                desc=stage_name,
                unit=unit,
                leave=False,
                mininterval=0.5,
            )

    def update(self, n: int = 1, label: str = "") -> None:
        self.count += n
        if self.interactive and self._tqdm is not None:
            if label:
                self._tqdm.set_postfix_str(label)  # type: ignore[attr-defined]
            self._tqdm.update(n)  # type: ignore[call-arg]
        else:
            if (self.count % self.log_every == 0) or (self.count == self.total):
                pct = (self.count / self.total) * 100 if self.total > 0 else 0.0
                logger.info(
                    "%s progress: %d/%d %ss (%.1f%%)%s",
                    self.stage_name,
                    self.count,
                    self.total,
                    self.unit,
                    pct,
                    f" [{label}]" if label else "",
                )

    def close(self) -> None:
        if self.interactive and self._tqdm is not None:
            self._tqdm.close()  # type: ignore[call-arg]

    def __enter__(self) -> "ProgressReporter":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
