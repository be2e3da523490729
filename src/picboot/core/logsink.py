"""
Bounded log sink for long-running device operations.

Worker threads log through the standard `logging` module; a LogQueue
attached to the `picboot` logger keeps the formatted lines until the
polling thread drains them. When the queue is full new lines are
dropped, lines already accepted keep their order.
"""

import logging
import queue
from contextlib import contextmanager
from typing import Iterator, List

DEFAULT_CAPACITY = 64


class LogQueue(logging.Handler):
    """Capture log records into a bounded FIFO of formatted strings."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.lines: "queue.Queue[str]" = queue.Queue(maxsize=capacity)
        self.dropped = 0
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.lines.put_nowait(self.format(record))
        except queue.Full:
            self.dropped += 1

    def drain(self) -> List[str]:
        """Take every queued line without blocking."""
        out = []
        while True:
            try:
                out.append(self.lines.get_nowait())
            except queue.Empty:
                return out


@contextmanager
def attach_log_queue(
    logger_name: str = "picboot",
    capacity: int = DEFAULT_CAPACITY,
    level: int = logging.INFO,
    propagate: bool = True,
) -> Iterator[LogQueue]:
    """
    Attach a LogQueue to a logger for the duration of the block.

    With propagate=False the queue is the only sink for the logger, so
    console handlers on the root logger do not print the lines twice.
    """
    target_logger = logging.getLogger(logger_name)
    handler = LogQueue(capacity, level)
    previous_level = target_logger.level
    previous_propagate = target_logger.propagate
    if previous_level == logging.NOTSET or previous_level > level:
        target_logger.setLevel(level)
    target_logger.propagate = propagate
    target_logger.addHandler(handler)
    try:
        yield handler
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)
        target_logger.propagate = previous_propagate
