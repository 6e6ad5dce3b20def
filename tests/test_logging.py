import logging
from logging.handlers import RotatingFileHandler

from modelsnapper.core import logging_config


def test_stdout_only_without_log_file(test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "LOG_FILE", "")

    handlers = logging_config.build_handlers()

    assert len(handlers) == 1
    assert isinstance(handlers[0], logging.StreamHandler)
    assert not isinstance(handlers[0], RotatingFileHandler)


def test_log_file_adds_rotating_handler(test_settings, monkeypatch, tmp_path):
    log_file = tmp_path / "logs" / "modelsnapper.log"
    monkeypatch.setattr(test_settings, "LOG_FILE", str(log_file))

    handlers = logging_config.build_handlers()
    try:
        rotating = [h for h in handlers if isinstance(h, RotatingFileHandler)]
        assert len(rotating) == 1
        assert rotating[0].baseFilename == str(log_file)
        assert log_file.parent.is_dir()
    finally:
        for handler in handlers:
            handler.close()


def test_level_follows_debug_flag(test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "LOG_LEVEL", "warning")
    monkeypatch.setattr(test_settings, "DEBUG", False)
    assert logging_config.resolve_level() == logging.WARNING

    monkeypatch.setattr(test_settings, "DEBUG", True)
    assert logging_config.resolve_level() == logging.DEBUG
    assert logging_config.resolve_level("error") == logging.ERROR


def test_unknown_level_falls_back_to_info(test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "DEBUG", False)
    monkeypatch.setattr(test_settings, "LOG_LEVEL", "chatty")

    assert logging_config.resolve_level() == logging.INFO
