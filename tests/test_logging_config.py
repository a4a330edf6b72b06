from __future__ import annotations

import json
import logging

from docrag.config import Settings, get_settings
from docrag.logging_config import AUDIT_LOGGER_NAME, MinimalJSONFormatter, configure_logging
from docrag.telemetry import log_event


def test_audit_log_receives_document_lifecycle(tmp_path, document_store) -> None:
    audit_path = configure_logging(str(tmp_path), "INFO")

    uploaded = document_store.upload(b"Boiler pressure guide", "guide.txt", "text/plain")
    document_store.process(uploaded.id)
    document_store.delete(uploaded.id)

    events = [json.loads(line) for line in audit_path.read_text(encoding="utf-8").splitlines()]
    assert [event["event"] for event in events] == ["upload", "process", "delete"]
    assert all(event["document_id"] == uploaded.id for event in events)
    assert events[1]["status"] == "processed"
    assert events[0]["module"] == AUDIT_LOGGER_NAME


def test_formatter_merges_dict_messages_and_extras() -> None:
    record = logging.LogRecord("docrag.test", logging.INFO, __file__, 1, {"step": "demo"}, None, None)
    record.request_id = "abc"

    payload = json.loads(MinimalJSONFormatter().format(record))

    assert payload["step"] == "demo"
    assert payload["request_id"] == "abc"
    assert payload["level"] == "INFO"
    assert payload["ts"].endswith("Z")


def test_log_event_schema(caplog) -> None:
    logger = logging.getLogger("docrag.test")

    with caplog.at_level(logging.INFO, logger="docrag.test"):
        log_event(logger, "demo.step", document_id="doc_1", duration_ms=1.23456, details={"pages": 2})

    assert caplog.records[-1].msg == {
        "step": "demo.step",
        "module": "docrag.test",
        "document_id": "doc_1",
        "duration_ms": 1.235,
        "details": {"pages": 2},
    }


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("VECTOR_STORE", "Chroma")
    monkeypatch.setenv("CHUNK_CHARS", "not-a-number")
    monkeypatch.setenv("PARSE_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = get_settings()

    assert settings.vector_store == "chroma"
    assert settings.chunk_chars == Settings().chunk_chars
    assert settings.parse_timeout_seconds == 2.5
    assert settings.log_level == "DEBUG"
    assert get_settings() is settings
