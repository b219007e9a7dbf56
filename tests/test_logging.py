import json
import logging

from centaur.utils.logging import JSONFormatter, log_security_event


def _record(**extra):
    record = logging.LogRecord("centaur.auth", logging.WARNING, __file__, 10, "SECURITY EVENT: %s", ("failed_login",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_extra_fields_become_top_level_keys():
    payload = json.loads(JSONFormatter().format(_record(foundry_id="f1", reason="invalid_password")))

    assert payload["message"] == "SECURITY EVENT: failed_login"
    assert payload["level"] == "WARNING"
    assert payload["foundry_id"] == "f1"
    assert payload["reason"] == "invalid_password"
    assert "args" not in payload


def test_security_event_is_a_warning_with_details(caplog):
    logger = logging.getLogger("centaur.tests")

    with caplog.at_level(logging.WARNING, logger="centaur.tests"):
        log_security_event("velocity_violation", {"user_id": "u1", "amount": 1500.0}, logger)

    record = caplog.records[-1]
    assert record.getMessage() == "SECURITY EVENT: velocity_violation"
    assert record.security_event is True
    assert record.amount == 1500.0
