"""Shared pytest fixtures."""

import logging

import pytest

# Modules that log one line per unreadable image or directory
NOISY_LOGGERS = ("dupfind.dedup.pipeline", "dupfind.walk")


@pytest.fixture(autouse=True)
def quiet_dupfind_logs(monkeypatch):
    """Keep scan output readable; tests that check logs use caplog levels."""
    monkeypatch.setenv("DUPFIND_LOG_LEVEL", "WARNING")
    saved = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)
