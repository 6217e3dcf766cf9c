import logging

import pytest


@pytest.fixture(autouse=True)
def reset_package_logger():
    """configure_logging() detaches the package logger from root; undo that between tests."""
    yield
    logger = logging.getLogger("osd_automation")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
