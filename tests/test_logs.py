import logging

from rusle_leaf.logs import build_logger


def test_build_logger_is_idempotent(tmp_path):
    log_file = tmp_path / "run.log"
    logger = build_logger("rusle_leaf.test_logs", log_file=log_file)
    again = build_logger("rusle_leaf.test_logs", log_file=log_file)

    try:
        assert logger is again
        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert len(logger.handlers) == 2

        logger.debug("written at debug")
        file_handlers[0].flush()
        assert "DEBUG - written at debug" in log_file.read_text()
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
