"""Tests for the package logger configuration."""

from __future__ import annotations

import logging

import pytest

import stockflow


@pytest.mark.parametrize(
    "raw, expected",
    [("debug", logging.DEBUG), (" Warning ", logging.WARNING), ("", logging.INFO), (None, logging.INFO), ("loud", logging.INFO)],
)
def test_resolve_log_level(raw, expected):
    """Level names are case-insensitive; anything unknown keeps the default."""

    assert stockflow.resolve_log_level(raw) == expected


def test_package_logger_is_configured_once():
    """Re-running the configuration must not stack duplicate handlers."""

    before = list(stockflow.log.handlers)
    assert stockflow._configure_logging() is stockflow.log
    assert stockflow.log.handlers == before
    assert stockflow.log.name == "stockflow"
