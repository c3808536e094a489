import json
import logging

import pytest
from fastapi.testclient import TestClient

from signaldesk.infra.logging import LOG_CONTEXT, clear_log_context, configure_logging, redact_pii, update_log_context
from signaldesk.main import app
from signaldesk.settings import Settings


def test_redaction_masks_contact_details_and_link_keys():
    redacted = redact_pii("donor jane@example.org 555-123-4567 https://d.example/give?refcode=abc123&amount=5")

    assert "jane@example.org" not in redacted
    assert "555-123-4567" not in redacted
    assert "abc123" not in redacted
    assert "refcode=[REDACTED_TOKEN]" in redacted
    assert "amount=5" in redacted


def test_json_logs_redact_sensitive_keys(capsys):
    configure_logging()
    logger = logging.getLogger("signaldesk.redaction-test")

    logger.info(
        "touchpoint_recorded",
        extra={"extra": {"donor_identity": "donor-1", "url": "https://d.example/?click_id=xyz", "channel": "sms"}},
    )

    captured = capsys.readouterr()
    payload = json.loads((captured.out or captured.err).strip().splitlines()[-1])
    assert payload["message"] == "touchpoint_recorded"
    assert payload["donor_identity"] == "[REDACTED]"
    assert "xyz" not in payload["url"]
    assert payload["channel"] == "sms"


def test_log_context_is_merged_and_cleared(capsys):
    configure_logging()
    clear_log_context()
    update_log_context(job="entity-trends", run_id="run-1", ignored=None)

    logging.getLogger("signaldesk.context-test").info("job_complete")

    captured = capsys.readouterr()
    payload = json.loads((captured.out or captured.err).strip().splitlines()[-1])
    assert payload["job"] == "entity-trends"
    assert payload["run_id"] == "run-1"
    assert "ignored" not in payload

    clear_log_context()
    assert LOG_CONTEXT.get({}) == {}


def test_unhandled_exception_logs_request_id(caplog):
    async def boom():  # pragma: no cover - executed in test client
        raise RuntimeError("boom")

    app.router.add_api_route("/_test/boom", boom, methods=["GET"])
    caplog.set_level(logging.ERROR, logger="signaldesk.main")
    try:
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/_test/boom", headers={"X-Request-ID": "req-123"})
    finally:
        app.router.routes = [route for route in app.router.routes if getattr(route, "path", None) != "/_test/boom"]

    assert response.status_code == 500
    assert response.json()["request_id"] == "req-123"
    error_records = [record for record in caplog.records if record.getMessage() == "unhandled_exception"]
    assert error_records
    assert error_records[0].extra["request_id"] == "req-123"


def test_exception_lines_carry_type_and_scrubbed_trace(capsys):
    configure_logging("info")
    logger = logging.getLogger("signaldesk.exception-test")

    try:
        raise ValueError("donor jane@example.org could not be linked")
    except ValueError:
        logger.exception("attribution_item_failed", extra={"extra": {"transaction_id": "txn-1"}})

    captured = capsys.readouterr()
    payload = json.loads((captured.out or captured.err).strip().splitlines()[-1])
    assert payload["exc_type"] == "ValueError"
    assert payload["transaction_id"] == "txn-1"
    assert "jane@example.org" not in payload["exc_info"]


def test_debug_lines_follow_configured_level(capsys):
    configure_logging("warning")
    logging.getLogger("signaldesk.level-test").info("trend_batch_complete")
    assert capsys.readouterr().err == ""

    configure_logging(Settings(app_env="dev", log_level=" debug ").log_level)
    assert logging.getLogger().level == logging.DEBUG
    configure_logging()


def test_unknown_log_level_is_rejected():
    with pytest.raises(ValueError):
        Settings(app_env="dev", log_level="verbose")
