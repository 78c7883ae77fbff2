import logging
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

from logtail import LogtailHandler

from treesync import logging_conf, settings


def teardown_function():
    logging_conf.setup_logging()


def test_local_handlers_only_without_token(tmp_path):
    with patch.object(settings, "LOGS_DIR", tmp_path), patch.object(settings, "BETTERSTACK_SOURCE_TOKEN", None):
        logger = logging_conf.setup_logging()

    handlers = logging.getLogger().handlers
    assert logger.name == "treesync"
    assert not any(isinstance(h, LogtailHandler) for h in handlers)
    files = [h for h in handlers if isinstance(h, RotatingFileHandler)]
    assert [h.baseFilename for h in files] == [str(tmp_path / "treesync.log")]
    assert "%(threadName)s" in files[0].formatter._fmt


def test_betterstack_handler_with_token(tmp_path):
    with patch.object(settings, "LOGS_DIR", tmp_path), \
            patch.object(settings, "BETTERSTACK_SOURCE_TOKEN", "token"), \
            patch.object(logging_conf, "LogtailHandler") as fake_handler:
        fake_handler.return_value = logging.NullHandler()
        logging_conf.setup_logging()

    fake_handler.assert_called_once()
    assert fake_handler.call_args.kwargs["source_token"] == "token"
