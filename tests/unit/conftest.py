"""Shared fixtures for unit tests."""

from __future__ import annotations

import logging

import pytest

from concrnt.core.log import ROOT_LOGGER


@pytest.fixture(autouse=True)
def _reset_concrnt_logger():
    """Undo configure_logging so one test's stream never leaks into the next."""
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, "_concrnt", False):
            logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
