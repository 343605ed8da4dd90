import logging

import pytest

from observability import get_logger


@pytest.fixture
def restore_root_level():
    root = logging.getLogger()
    original = root.level
    yield root
    root.setLevel(original)


def test_level_from_environment_reaches_root(monkeypatch, restore_root_level):
    get_logger("tracker.first")
    monkeypatch.setenv("TRACKER_LOG_LEVEL", "WARNING")

    logger = get_logger("tracker.second")

    assert restore_root_level.level == logging.WARNING
    assert logger.level == logging.WARNING


def test_unknown_level_falls_back_to_info(monkeypatch, restore_root_level):
    monkeypatch.setenv("TRACKER_LOG_LEVEL", "chatty")
    get_logger("tracker.third")
    assert restore_root_level.level == logging.INFO
