import logging

import pytest

from lithomesh.logging_config import LOGGER_NAME, setup_logging


@pytest.fixture(autouse=True)
def restore_logger():
    logger = logging.getLogger(LOGGER_NAME)
    handlers, level = list(logger.handlers), logger.level
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)


def test_log_lines_land_in_the_file(tmp_path):
    log_file = tmp_path / "run.log"
    setup_logging(level="info", log_file=str(log_file))
    logging.getLogger("lithomesh.mesh").info("Triangulated 4 vertices into 2 triangles")
    logging.getLogger("lithomesh.mesh").debug("not written")
    for handler in logging.getLogger(LOGGER_NAME).handlers:
        handler.flush()

    text = log_file.read_text(encoding="utf-8")
    assert "[INFO] lithomesh.mesh: Triangulated 4 vertices into 2 triangles" in text
    assert "not written" not in text


def test_repeated_setup_replaces_its_own_handlers(tmp_path):
    logger = logging.getLogger(LOGGER_NAME)
    foreign = logging.NullHandler()
    logger.addHandler(foreign)
    before = len(logger.handlers)
    setup_logging(logging.DEBUG, log_file=str(tmp_path / "a.log"))
    setup_logging(logging.WARNING)
    assert foreign in logger.handlers
    assert len(logger.handlers) == before + 1
    assert logger.level == logging.WARNING


def test_unknown_level_name():
    with pytest.raises(ValueError):
        setup_logging("LOUD")
