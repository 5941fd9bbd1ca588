import logging

import pytest

from school_attendance.logger import ROOT_LOGGER_NAME, configure_logging, setup_logger


@pytest.fixture
def log_dir(tmp_path):
    yield tmp_path
    # Leave a fresh package logger behind for the other tests.
    configure_logging(force=True)


def test_component_loggers_share_the_package_handlers(log_dir):
    configure_logging(level="DEBUG", log_dir=log_dir, force=True)

    first = setup_logger("Matcher")
    again = setup_logger("Matcher")
    other = setup_logger("Recorder")

    root = logging.getLogger(ROOT_LOGGER_NAME)
    assert first is again
    assert first.name == "school_attendance.Matcher"
    assert first.handlers == [] and other.handlers == []
    assert len(root.handlers) == 2
    assert root.propagate is False


def test_configured_level_applies_to_children(log_dir):
    configure_logging(level="warning", log_dir=log_dir, force=True)
    component = setup_logger("Recorder")

    assert component.getEffectiveLevel() == logging.WARNING
    assert not component.isEnabledFor(logging.INFO)


def test_repeat_configuration_is_ignored_without_force(log_dir):
    configure_logging(level="DEBUG", log_dir=log_dir, force=True)
    root = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = list(root.handlers)

    configure_logging(level="ERROR")

    assert root.handlers == handlers
    assert root.level == logging.DEBUG


def test_records_are_written_to_the_log_file(log_dir):
    configure_logging(level="INFO", log_dir=log_dir, log_file="school.log", force=True)

    setup_logger("Pipeline").info("Presence recorded for stu-a")

    text = (log_dir / "school.log").read_text(encoding="utf-8")
    assert "| INFO | school_attendance.Pipeline | Presence recorded for stu-a" in text


def test_unknown_level_leaves_handlers_in_place(log_dir):
    configure_logging(level="INFO", log_dir=log_dir, force=True)
    root = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = list(root.handlers)

    with pytest.raises(ValueError, match="verbose"):
        configure_logging(level="verbose", log_dir=log_dir, force=True)

    assert root.handlers == handlers
    assert root.level == logging.INFO
