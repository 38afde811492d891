"""Tests for structured log formatting."""

import logging

from app.core.logging import StructuredFormatter, log_with_context


class CaptureHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.setFormatter(StructuredFormatter())
        self.lines: list[str] = []

    def emit(self, record):
        self.lines.append(self.format(record))


def capture_logger(name: str):
    logger = logging.getLogger(name)
    logger.handlers = []
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    handler = CaptureHandler()
    logger.addHandler(handler)
    return logger, handler


def test_correlation_fields_promoted():
    logger, handler = capture_logger("tests.logging.correlation")

    log_with_context(
        logger,
        logging.INFO,
        "Rotated session",
        trigger="context_limit",
        project_id="proj-frizy",
        scope_id="workspace-1",
    )

    line = handler.lines[0]
    assert "message=Rotated session" in line
    assert line.index("project_id=proj-frizy") < line.index("scope_id=workspace-1")
    assert line.index("scope_id=workspace-1") < line.index("trigger=context_limit")


def test_exception_traceback_appended():
    logger, handler = capture_logger("tests.logging.exception")

    try:
        raise ValueError("bad row")
    except ValueError:
        logger.exception("Read failed")

    assert "level=ERROR" in handler.lines[0]
    assert "ValueError: bad row" in handler.lines[0]
