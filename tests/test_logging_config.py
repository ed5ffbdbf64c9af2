import json
import logging

from crm_intake.logging_config import JSONFormatter, get_logger, session_logger, setup_logging


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def formatted(**fields) -> dict:
    record = logging.makeLogRecord({"name": "crm_intake.engine", "levelname": "INFO", "msg": "State idle -> gathering_messages", **fields})
    return json.loads(JSONFormatter().format(record))


class TestJSONFormatter:
    def test_session_keys_lifted_to_top_level(self):
        data = formatted(context={"chat_id": 100, "user_id": 7, "event": "forward"})
        assert data["chat_id"] == 100
        assert data["user_id"] == 7
        assert data["context"] == {"event": "forward"}
        assert data["message"] == "State idle -> gathering_messages"

    def test_no_context_key_when_only_session(self):
        data = formatted(context={"chat_id": 100, "user_id": 7})
        assert "context" not in data

    def test_unserializable_values_become_strings(self):
        data = formatted(context={"pending": {11}})
        assert data["context"]["pending"] == "{11}"


class TestSessionLogger:
    def setup_method(self):
        self.handler = ListHandler()
        self.logger = get_logger("test_session")
        self.logger.addHandler(self.handler)
        self.logger.setLevel(logging.DEBUG)

    def teardown_method(self):
        self.logger.removeHandler(self.handler)

    def test_session_keys_bound(self):
        session_logger("test_session", 100, 7).info("hello")
        assert self.handler.records[0].context == {"chat_id": 100, "user_id": 7}

    def test_call_context_merged(self):
        session_logger("test_session", 100, 7).warning("failed", context={"error_code": "crm_error"})
        assert self.handler.records[0].context == {"chat_id": 100, "user_id": 7, "error_code": "crm_error"}

    def test_caller_extra_kept(self):
        session_logger("test_session", 100, 7).info("x", extra={"attempt": 2})
        record = self.handler.records[0]
        assert record.attempt == 2
        assert record.context["chat_id"] == 100


class TestSetupLogging:
    def test_unknown_level_defaults_to_info(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging("chatty")
            assert root.level == logging.INFO
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
