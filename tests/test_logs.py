import io
import json
import logging

import pytest

from anubiskit.logs import ErrorLogFilter, filtered_http_logger, init_logging, request_logger


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def filtered_logger(buf):
    logger = logging.getLogger(f"test-error-filter-{id(buf)}")
    logger.handlers.clear()
    logger.propagate = False
    handler = logging.StreamHandler(ErrorLogFilter(buf))
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    return logger


def test_error_log_filter_suppresses_context_canceled():
    buf = io.StringIO()
    filtered_logger(buf).error("http: proxy error: context canceled")
    assert buf.getvalue() == ""


def test_error_log_filter_allows_other_messages():
    buf = io.StringIO()
    filtered_logger(buf).error("http: another error occurred")
    output = buf.getvalue()
    assert "http: another error occurred" in output
    assert output.endswith("\n")


def test_error_log_filter_suppresses_partial_match():
    buf = io.StringIO()
    filtered_logger(buf).error("Some other log before http: proxy error: context canceled and after")
    assert buf.getvalue() == ""


def test_error_log_filter_without_destination_reports_length():
    assert ErrorLogFilter().write("hello\n") == 6


def test_filtered_http_logger(capsys):
    http_logger = filtered_http_logger()
    http_logger.error("http: proxy error: context canceled")
    http_logger.error("http: another error occurred")
    err = capsys.readouterr().err
    assert "context canceled" not in err
    assert "http: another error occurred\n" in err


def test_init_logging_named_levels(restore_root):
    assert init_logging("debug") == logging.DEBUG
    assert init_logging("INFO") == logging.INFO
    assert init_logging("WARN") == logging.WARNING
    assert init_logging("error") == logging.ERROR


def test_init_logging_invalid_level(restore_root, capsys):
    assert init_logging("bogus") == logging.INFO
    assert "invalid log level bogus" in capsys.readouterr().err


def test_init_logging_writes_json(restore_root, capsys):
    init_logging("info")
    logging.getLogger("anubiskit.test").warning("hello %s", "world")
    logging.getLogger("anubiskit.test").debug("hidden")
    lines = [line for line in capsys.readouterr().err.splitlines() if line]
    assert len(lines) == 1
    entry = json.loads(lines[0])
    assert entry["msg"] == "hello world"
    assert entry["level"] == "WARN"
    assert entry["source"]["function"] == "test_init_logging_writes_json"


class _Collector(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_request_logger_attaches_headers():
    environ = {
        "HTTP_USER_AGENT": "Mozilla/5.0",
        "HTTP_ACCEPT_LANGUAGE": "en-US",
        "HTTP_X_REAL_IP": "1.1.1.1",
    }
    adapter = request_logger(environ)
    collector = _Collector()
    adapter.logger.addHandler(collector)
    previous = adapter.logger.level
    adapter.logger.setLevel(logging.DEBUG)
    try:
        adapter.info("checked")
    finally:
        adapter.logger.removeHandler(collector)
        adapter.logger.setLevel(previous)
    assert len(collector.records) == 1
    attrs = collector.records[0].attrs
    assert attrs["user_agent"] == "Mozilla/5.0"
    assert attrs["accept_language"] == "en-US"
    assert attrs["x-real-ip"] == "1.1.1.1"
    assert attrs["x-forwarded-for"] == ""