import logging

from autolayer.config.settings import Settings
from autolayer.core.logging.builder import make_dict_config, setup_logging
from autolayer.core.logging.filters import CorrelationIdFilter
from autolayer.core.logging.formatters import ColorFormatter


def make_settings(**overrides) -> Settings:
    values = {"ENV": "development", "LOG_LEVEL": "INFO", "LOG_FORMAT": "json", "LOG_TO_STDOUT": True}
    values.update(overrides)
    return Settings(**values)


def test_stdout_config_uses_console_and_error_console():
    cfg = make_dict_config(make_settings())
    assert set(cfg["handlers"]) == {"console", "error_console"}
    assert cfg["handlers"]["console"]["stream"] == "ext://sys.stdout"
    assert cfg["handlers"]["console"]["formatter"] == "json"
    assert cfg["handlers"]["error_console"]["level"] == "ERROR"


def test_file_config_when_log_dir_is_set(tmp_path):
    cfg = make_dict_config(make_settings(LOG_TO_STDOUT=False, LOG_DIR=tmp_path))
    assert set(cfg["handlers"]) == {"console", "file", "error_file"}
    assert cfg["handlers"]["file"]["filename"].endswith("autolayer.log")
    assert cfg["handlers"]["error_file"]["formatter"] == "json"


def test_every_handler_runs_both_filters():
    cfg = make_dict_config(make_settings())
    for handler in cfg["handlers"].values():
        assert handler["filters"] == ["correlation_id", "redact"]


def test_text_format_in_development_uses_color_formatter():
    cfg = make_dict_config(make_settings(LOG_FORMAT="text"))
    assert cfg["formatters"]["standard"]["()"] is ColorFormatter
    assert cfg["handlers"]["console"]["formatter"] == "standard"


def test_text_format_outside_development_is_plain():
    cfg = make_dict_config(make_settings(ENV="production", LOG_FORMAT="text"))
    assert cfg["formatters"]["standard"]["()"] is logging.Formatter


def test_sql_logging_toggle():
    assert make_dict_config(make_settings())["loggers"]["sqlalchemy.engine"]["level"] == "WARNING"
    enabled = make_dict_config(make_settings(ENABLE_SQL_LOGGING=True))
    assert enabled["loggers"]["sqlalchemy.engine"]["level"] == "INFO"


def test_package_logger_follows_log_level():
    cfg = make_dict_config(make_settings(LOG_LEVEL="warning"))
    assert cfg["loggers"]["autolayer"]["level"] == "WARNING"


def test_setup_logging_creates_log_dir(tmp_path):
    settings = make_settings(LOG_TO_STDOUT=False, LOG_DIR=tmp_path / "logs", LOG_LEVEL="DEBUG", LOG_FORMAT="text")
    assert not settings.LOG_DIR.exists()
    try:
        setup_logging(settings)
        assert settings.LOG_DIR.exists()
        root = logging.getLogger()
        assert root.handlers
        assert any(isinstance(f, CorrelationIdFilter) for f in root.filters)
    finally:
        # hand the session-wide console configuration back to the remaining tests
        setup_logging(make_settings(ENV="testing", LOG_LEVEL="DEBUG", LOG_FORMAT="text"))
