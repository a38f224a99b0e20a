from __future__ import annotations

import allure

from agent_matrix.orchestrator.sanitization import redact_payload, sanitize_preview

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Redaction"),
]


def test_sanitize_preview_redacts_tokens_and_emails() -> None:
    text = (
        "Authorization: Bearer abcdefghijklmnop "
        "key sk-ant-abcdefghijkl contact ops@example.com "
        "url https://api.example.com/x?token=secret123&page=2"
    )

    sanitized = sanitize_preview(text)

    assert "abcdefghijklmnop" not in sanitized
    assert "Bearer [redacted-token]" in sanitized
    assert "sk-ant-abcdefghijkl" not in sanitized
    assert "[redacted-email]" in sanitized
    assert "token=[redacted]" in sanitized
    assert "page=2" in sanitized


def test_sanitize_preview_masks_connection_credentials() -> None:
    sanitized = sanitize_preview("connect postgres://admin:hunter2@db:5432/app failed")

    assert sanitized == "connect postgres://[redacted-credentials]@db:5432/app failed"


def test_sanitize_preview_strips_and_clamps() -> None:
    assert sanitize_preview("   ") == ""
    assert sanitize_preview("  plain error  ") == "plain error"
    assert len(sanitize_preview("x" * 5_000)) == 2_000
    assert sanitize_preview("abcdef", max_chars=3) == "abc"


def test_redact_payload_masks_secret_keys_recursively() -> None:
    payload = {
        "summary": "mail me at dev@example.com",
        "api_key": "plain-value",
        "nested": {"password": "x", "items": ["ok", "Bearer abcdefghijkl"]},
        "count": 3,
    }

    redacted = redact_payload(payload)

    assert redacted == {
        "summary": "mail me at [redacted-email]",
        "api_key": "[redacted]",
        "nested": {"password": "[redacted]", "items": ["ok", "Bearer [redacted-token]"]},
        "count": 3,
    }
    assert payload["api_key"] == "plain-value"


def test_redact_payload_keeps_long_strings_intact() -> None:
    value = "  " + "y" * 3_000

    assert redact_payload({"body": value}) == {"body": value}
