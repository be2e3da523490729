"""Tests for the bounded log queue."""

import logging

from picboot.core.logsink import LogQueue, attach_log_queue


def _logger(name: str, handler: logging.Handler) -> logging.Logger:
    log = logging.getLogger(name)
    log.setLevel(logging.DEBUG)
    log.propagate = False
    log.addHandler(handler)
    return log


def test_lines_kept_in_order() -> None:
    sink = LogQueue(capacity=8)
    log = _logger("picboot.tests.order", sink)
    try:
        for i in range(5):
            log.info(f"line {i}")
    finally:
        log.removeHandler(sink)
    assert sink.drain() == [f"line {i}" for i in range(5)]
    assert sink.drain() == []


def test_overflow_drops_new_lines() -> None:
    sink = LogQueue(capacity=3)
    log = _logger("picboot.tests.overflow", sink)
    try:
        for i in range(5):
            log.info(f"line {i}")
    finally:
        log.removeHandler(sink)
    assert sink.drain() == ["line 0", "line 1", "line 2"]
    assert sink.dropped == 2


def test_level_filter() -> None:
    sink = LogQueue(level=logging.INFO)
    log = _logger("picboot.tests.level", sink)
    try:
        log.debug("hidden")
        log.error("ERROR: shown")
    finally:
        log.removeHandler(sink)
    assert sink.drain() == ["ERROR: shown"]


def test_attach_captures_child_loggers() -> None:
    with attach_log_queue() as sink:
        logging.getLogger("picboot.core.regions").info("Erasing from: 0x800")
    assert sink.drain() == ["Erasing from: 0x800"]


def test_attach_restores_logger() -> None:
    target = logging.getLogger("picboot")
    level, propagate = target.level, target.propagate
    with attach_log_queue(level=logging.DEBUG, propagate=False) as sink:
        assert sink in target.handlers
        assert target.propagate is False
        assert target.getEffectiveLevel() == logging.DEBUG
    assert sink not in target.handlers
    assert target.level == level
    assert target.propagate == propagate
