"""
Core module for PicBoot.

This module provides the single source of truth for:
- Region operations over a bootloader session (regions.py)
- Address and baud parsing (parsing.py)
- Result objects (results.py)
- Bounded log sink for worker threads (logsink.py)
- Erase/read/write/run workflows (actions.py)

Front ends should call into this module rather than implementing their
own chunking or workflow logic.
"""

from .parsing import parse_address, parse_range, parse_baud
from .results import OperationResult
from .logsink import LogQueue, attach_log_queue
from .regions import (
    plan_chunks,
    erase_prog_region,
    read_prog_region,
    write_prog_region,
    start_app,
)
from .actions import (
    erase_device,
    read_device,
    load_image,
    write_device,
    start_application,
)

__all__ = [
    # Parsing
    "parse_address",
    "parse_range",
    "parse_baud",
    # Results
    "OperationResult",
    # Log sink
    "LogQueue",
    "attach_log_queue",
    # Region operations
    "plan_chunks",
    "erase_prog_region",
    "read_prog_region",
    "write_prog_region",
    "start_app",
    # Workflows
    "erase_device",
    "read_device",
    "load_image",
    "write_device",
    "start_application",
]
