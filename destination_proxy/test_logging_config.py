import logging

from destination_proxy.logging_config import LowercaseLevelFormatter, build_logging_config


def make_record(level, message):
    return logging.LogRecord("uvicorn.error", level, __file__, 1, message, None, None)


def test_lowercase_level_prefix():
    formatter = LowercaseLevelFormatter("%(message)s")

    assert formatter.format(make_record(logging.INFO, "running")) == "[info] running"
    assert formatter.format(make_record(logging.WARNING, "careful")) == "[warning] careful"


def test_uvicorn_loggers_share_the_console_handler():
    config = build_logging_config("DEBUG")

    assert config["loggers"]["uvicorn"]["handlers"] == ["default"]
    assert config["loggers"]["uvicorn.error"]["level"] == "DEBUG"
    assert config["loggers"]["uvicorn.access"]["propagate"] is False
