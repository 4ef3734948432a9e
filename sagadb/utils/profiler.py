"""
Lightweight profiling for bulk database work.

``profile_block`` measures wall-clock time, peak RSS (sampled on a background
thread through psutil) and process CPU usage around a block, and derives a
rows-per-second throughput once the caller records how many rows the block
handled.

    with profile_block("seed demo_records") as stats:
        stats.rows = executor.bulk_insert("demo_records", columns, rows)
    print(stats.throughput_rows_per_sec)
"""

from __future__ import annotations

import contextlib
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """Measurements collected by ``profile_block``."""

    label: str
    duration_seconds: float = 0.0
    rows: int = 0
    peak_rss_bytes: Optional[int] = None
    cpu_percent: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def throughput_rows_per_sec(self) -> float:
        if self.duration_seconds <= 0:
            return 0.0
        return self.rows / self.duration_seconds

    def as_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "rows": self.rows,
            "duration_seconds": self.duration_seconds,
            "throughput_rows_per_sec": self.throughput_rows_per_sec,
            "peak_rss_bytes": self.peak_rss_bytes,
            "cpu_percent": self.cpu_percent,
            **self.extra,
        }


@contextlib.contextmanager
def profile_block(label: str, sample_interval_ms: int = 50) -> Generator[ProfileStats, None, None]:
    """
    Profile a block of code.

    Parameters
    ----------
    label : str
        Human-friendly label for the profiled block.
    sample_interval_ms : int
        RSS sampling interval; lower is more accurate but costs more.
    """
    stats = ProfileStats(label=label)
    process = psutil.Process()
    peak_rss = process.memory_info().rss
    stop_sampling = threading.Event()

    def _sample_memory() -> None:
        nonlocal peak_rss
        while not stop_sampling.is_set():
            peak_rss = max(peak_rss, process.memory_info().rss)
            stop_sampling.wait(timeout=sample_interval_ms / 1000.0)

    process.cpu_percent(interval=None)
    sampler = threading.Thread(target=_sample_memory, daemon=True)
    sampler.start()

    started = time.perf_counter()
    try:
        yield stats
    finally:
        stats.duration_seconds = time.perf_counter() - started
        stop_sampling.set()
        sampler.join(timeout=1.0)
        stats.peak_rss_bytes = peak_rss
        stats.cpu_percent = process.cpu_percent(interval=None)


__all__ = ["ProfileStats", "profile_block"]
