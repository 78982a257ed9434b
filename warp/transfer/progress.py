"""
Transfer Progress

Passive byte counter handed to progress observers (the CLI renders it with
a rich progress bar). The counter may start at a resume offset so the
percentage always reflects the whole file.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass
class TransferProgress:
    """Track progress of a single transfer."""
    file_name: str
    total: Optional[int] = None
    transferred: int = 0
    resumed_from: int = 0
    start_time: float = field(default_factory=time.time)

    @property
    def progress_percent(self) -> Optional[float]:
        """Progress as percentage, None when the total is unknown."""
        if not self.total:
            return None
        return self.transferred / self.total * 100

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.start_time

    @property
    def speed_bytes_per_sec(self) -> float:
        """Throughput of this session only (resumed bytes excluded)."""
        elapsed = self.elapsed_seconds
        if elapsed == 0:
            return 0
        return (self.transferred - self.resumed_from) / elapsed

    @property
    def speed_mbps(self) -> float:
        return self.speed_bytes_per_sec * 8 / 1_000_000

    def to_dict(self) -> dict:
        return {
            'file_name': self.file_name,
            'total': self.total,
            'transferred': self.transferred,
            'resumed_from': self.resumed_from,
            'progress_percent': self.progress_percent,
            'speed_bytes_per_sec': self.speed_bytes_per_sec,
            'elapsed_seconds': self.elapsed_seconds,
        }


# Progress callback type
ProgressCallback = Callable[[TransferProgress], None]


def format_size(bytes_count: float) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


def throughput_mbps(byte_count: int, seconds: float) -> float:
    """Megabits per second for ``byte_count`` bytes moved in ``seconds``."""
    if seconds <= 0:
        return 0.0
    return byte_count * 8 / (seconds * 1_000_000)
