import logging

from key_reconciler.logging_config import LOGGER_NAME, TqdmLoggingHandler, setup_logger


def test_relative_log_file_is_placed_under_project_root(tmp_path):
    logger = setup_logger("debug", "logs/run.log", False, str(tmp_path))
    logging.getLogger(f"{LOGGER_NAME}.catalog").debug("saved")

    for handler in logger.handlers:
        handler.flush()
    content = (tmp_path / "logs" / "run.log").read_text(encoding="utf-8")
    assert " - DEBUG - key_reconciler.catalog - saved" in content
    assert logger.propagate is False

    setup_logger("INFO", "", False)


def test_repeated_setup_replaces_and_closes_handlers(tmp_path):
    first = setup_logger("INFO", str(tmp_path / "a.log"), True)
    old_file_handler = next(h for h in first.handlers if isinstance(h, logging.FileHandler))

    second = setup_logger("WARNING", "", True)

    assert second is first
    assert second.level == logging.WARNING
    assert [type(h) for h in second.handlers] == [TqdmLoggingHandler]
    assert old_file_handler.stream is None

    setup_logger("INFO", "", False)
