import base64
import logging

from dufs.http_logger import DEFAULT_LOG_FORMAT, HttpLogger

PASSWORD = "password"


def test_default_is_default_format():
    assert HttpLogger() == HttpLogger.parse(DEFAULT_LOG_FORMAT)


def test_format_round_trips_variable_names():
    logger = HttpLogger()
    data = {name: f"${name}" for name in ("remote_addr", "request", "status")}
    assert logger.format(data) == DEFAULT_LOG_FORMAT


def test_missing_values_become_dash():
    assert HttpLogger.parse("$status").format({}) == "-"


def test_trailing_literal_is_trimmed():
    assert HttpLogger.parse("$status done ").format({"status": "200"}) == "200 done"


def test_data_request_and_remote_user():
    logger = HttpLogger.parse("$request $remote_user")
    auth = "Basic " + base64.b64encode(f"user:{PASSWORD}".encode()).decode()
    data = logger.data("GET", "/a?b", {"Authorization": auth})
    assert data == {"request": "GET /a?b", "remote_user": "user"}
    assert logger.data("GET", "/", {}) == {"request": "GET /"}


def test_data_header_lookup_is_case_insensitive():
    logger = HttpLogger.parse("$http_user_agent")
    assert logger.data("GET", "/", {"User-Agent": "curl"}) == {"user-agent": "curl"}
    assert logger.data("GET", "/", {}) == {}


def test_header_round_trip_through_format():
    logger = HttpLogger.parse("[$http_x_real_ip]")
    data = logger.data("GET", "/", {"X-Real-Ip": "10.0.0.1"})
    assert logger.format(data) == "[10.0.0.1]"


def test_log_info_and_error(caplog):
    caplog.set_level(logging.INFO, logger="dufs")
    logger = HttpLogger.parse("$status")
    logger.log({"status": "200"})
    logger.log({"status": "500"}, "boom")
    assert [(r.levelno, r.getMessage()) for r in caplog.records] == [
        (logging.INFO, "200"),
        (logging.ERROR, "500 boom"),
    ]


def test_empty_format_disables_logging(caplog):
    caplog.set_level(logging.INFO, logger="dufs")
    HttpLogger.parse("").log({"status": "200"})
    assert caplog.records == []