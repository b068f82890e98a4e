"""Tests for proof-input redaction in the logging pipeline."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from property_settlement.logging_config import REDACTED, redact_private_inputs, setup_logging


class TestRedaction:
    def test_top_level_witness_masked(self) -> None:
        event = redact_private_inputs(
            None, "info", {"event": "proof.issued", "private_input": 2_000_000, "owner": "B"}
        )
        assert event["private_input"] == REDACTED
        assert event["owner"] == "B"

    def test_nested_body_masked(self) -> None:
        event = redact_private_inputs(
            None,
            "debug",
            {"event": "ledger.request", "body": {"net_worth": 5, "threshold": 1}},
        )
        assert event["body"] == {"net_worth": REDACTED, "threshold": 1}

    def test_unrelated_keys_untouched(self) -> None:
        original = {"event": "offer.created", "offer_id": "offer-1", "price": 100}
        assert redact_private_inputs(None, "info", dict(original)) == original


def test_json_output_is_redacted(capsys: pytest.CaptureFixture[str]) -> None:
    setup_logging(log_level="INFO", json_logs=True)
    try:
        structlog.get_logger("test").info("proof.generated", country_code="US", kind="jurisdiction")
        line = capsys.readouterr().out.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["country_code"] == REDACTED
        assert payload["kind"] == "jurisdiction"
        assert payload["event"] == "proof.generated"
    finally:
        structlog.reset_defaults()
        logging.getLogger().handlers.clear()
