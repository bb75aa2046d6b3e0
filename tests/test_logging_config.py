from core.logging_config import REDACTED, redact_secrets


def test_secret_keys_are_masked_recursively():
    event = {
        "event": "payment_intent_failed",
        "gateway": "flow",
        "request": {"apiKey": "live-key", "s": "abc123", "amount": "19990"},
        "headers": [{"Authorization": "Bearer t"}, {"x-api-key": "np"}],
        "client_secret": "pp-secret",
    }
    out = redact_secrets(None, "error", event)

    assert out["event"] == "payment_intent_failed"
    assert out["request"] == {"apiKey": REDACTED, "s": REDACTED, "amount": "19990"}
    assert out["headers"] == [{"Authorization": REDACTED}, {"x-api-key": REDACTED}]
    assert out["client_secret"] == REDACTED


def test_non_secret_values_pass_through():
    event = {"event": "webhook_event_recorded", "gateway_event_id": "tok-1", "payment_id": None}
    assert redact_secrets(None, "info", event) == event
