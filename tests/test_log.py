import logging
import sys

from shared.log import SessionFormatter, _is_development, get_logger, log_frame


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("relaychat.test", logging.INFO, __file__, 1, "hello", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_session_formatter_prefixes_context():
    formatter = SessionFormatter(fmt="%(message)s")
    assert formatter.format(_record(username="Al", state="live")) == "[user=Al state=live] hello"
    assert formatter.format(_record()) == "hello"


def test_session_formatter_places_context_after_level_column():
    formatter = SessionFormatter(fmt="[%(levelname)-8s]: %(message)s")
    record = _record(username="Al", msg_type="join")

    assert formatter.format(record) == "[INFO    ]: [user=Al msg=join] hello"
    assert record.msg == "hello"


def test_session_formatter_keeps_percent_args():
    formatter = SessionFormatter(fmt="%(message)s")
    record = logging.LogRecord("relaychat.test", logging.INFO, __file__, 1, "sent %d frames", (3,), None)
    record.username = "100%"

    assert formatter.format(record) == "[user=100%] sent 3 frames"


def test_development_mode_ignores_debug_flag(monkeypatch):
    monkeypatch.delenv("PYTHON_ENV", raising=False)
    monkeypatch.delitem(sys.modules, "pytest")
    assert _is_development() is False

    monkeypatch.setenv("PYTHON_ENV", "dev")
    assert _is_development() is True


def test_get_logger_configures_once():
    first = get_logger("relaychat.test.once")
    handlers = list(first.handlers)
    second = get_logger("relaychat.test.once")
    assert first is second
    assert second.handlers == handlers
    assert first.propagate is False


def test_log_frame_never_logs_password():
    records = []

    class Collect(logging.Handler):
        def emit(self, record):
            records.append(record)

    logger = logging.getLogger("relaychat.test.frames")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(Collect())

    log_frame(logger, "debug", "Sending frame",
              frame={"type": "join", "username": "Al", "password": "hunter2"})

    assert len(records) == 1
    assert records[0].msg_type == "join"
    assert records[0].username == "Al"
    assert "hunter2" not in records[0].getMessage()
