"""Tests for log level resolution and the logger factory."""

import logging

import pytest

from marketbot.src.utils.logger import get_logger, resolve_level


@pytest.mark.parametrize(
    "env, override, expected",
    [
        ("dev", None, logging.DEBUG),
        ("prod", None, logging.WARNING),
        ("staging", None, logging.INFO),
        ("prod", "DEBUG", logging.DEBUG),
        ("dev", "error", logging.ERROR),
    ],
)
def test_resolve_level(env, override, expected):
    assert resolve_level(env, override) == expected


def test_get_logger_attaches_one_handler():
    first = get_logger("marketbot.tests.single_handler", level=logging.ERROR)
    second = get_logger("marketbot.tests.single_handler")

    assert first is second
    assert len(second.handlers) == 1
    assert second.level == logging.ERROR
    assert second.propagate is False
