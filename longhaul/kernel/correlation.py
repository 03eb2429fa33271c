"""Correlation codec: run id + operation id carried in every payload.

Every message, cloud-to-device delivery and method invocation produced by
the harness embeds a small JSON envelope::

    {"longhaul-tests": "<test run id>", "message-id": <operation id>}

Receivers decode the envelope and compare the run id with their own; only
matching envelopes are attributed to the local run, so concurrent runs on
shared infrastructure ignore each other's traffic.

Decoding validates structure with a JSON Schema (Draft 2020-12) before any
field is read.  Every failure raises ``CorrelationParseError``; there is no
partially-decoded result.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from jsonschema import Draft202012Validator  # type: ignore[import-untyped]

from longhaul.kernel.exceptions import CorrelationMismatch, CorrelationParseError

log = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────

TEST_RUN_ID_FIELD: str = "longhaul-tests"
OPERATION_ID_FIELD: str = "message-id"

ENVELOPE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        TEST_RUN_ID_FIELD: {"type": "string", "minLength": 1},
        OPERATION_ID_FIELD: {"type": "integer", "minimum": 1},
    },
    "required": [TEST_RUN_ID_FIELD, OPERATION_ID_FIELD],
}

_VALIDATOR = Draft202012Validator(ENVELOPE_SCHEMA)


@dataclass(frozen=True, slots=True)
class CorrelationEnvelope:
    """Decoded ``{test_run_id, operation_id}`` pair."""

    test_run_id: str
    operation_id: int


# ── Codec ────────────────────────────────────────────────


def encode(test_run_id: str, operation_id: int) -> str:
    """Serialise the correlation envelope for *test_run_id*/*operation_id*.

    Raises
    ------
    ValueError
        If *test_run_id* is empty or *operation_id* is negative.
    """
    if not test_run_id:
        raise ValueError("test_run_id must be a non-empty string")
    if operation_id < 0:
        raise ValueError(f"operation_id must be non-negative, got {operation_id}")
    return json.dumps(
        {TEST_RUN_ID_FIELD: test_run_id, OPERATION_ID_FIELD: operation_id}
    )


def decode(payload: str | bytes | bytearray) -> CorrelationEnvelope:
    """Parse *payload* into a ``CorrelationEnvelope``.

    Pure function.  Extra fields in the object are ignored so that
    envelopes can be embedded in larger application bodies.

    Raises
    ------
    CorrelationParseError
        If *payload* is not valid JSON, not an object, either field is
        missing or of the wrong type, or the operation id is the ``0``
        sentinel.
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CorrelationParseError(f"payload is not UTF-8: {exc}") from None

    try:
        document = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise CorrelationParseError(f"payload is not JSON: {exc}") from None

    errors = [
        {
            "path": "/".join(str(p) for p in e.absolute_path) or "/",
            "message": e.message,
        }
        for e in _VALIDATOR.iter_errors(document)
    ]
    if errors:
        raise CorrelationParseError(
            f"{len(errors)} schema violation{'s' if len(errors) != 1 else ''}",
            errors,
        )

    # The schema's "integer" type admits integral floats such as 7.0.
    return CorrelationEnvelope(
        test_run_id=document[TEST_RUN_ID_FIELD],
        operation_id=int(document[OPERATION_ID_FIELD]),
    )


def verify(payload: str | bytes | bytearray, test_run_id: str) -> int:
    """Decode *payload* and return its operation id if it belongs to *test_run_id*.

    Raises
    ------
    CorrelationParseError
        If *payload* is malformed.
    CorrelationMismatch
        If the envelope carries a different run id.
    """
    envelope = decode(payload)
    if envelope.test_run_id != test_run_id:
        raise CorrelationMismatch(test_run_id, envelope.test_run_id)
    return envelope.operation_id


def match(payload: str | bytes | bytearray, test_run_id: str) -> int | None:
    """Receiver matching policy: the operation id, or ``None`` if not ours.

    Malformed payloads are logged and rejected; foreign run ids are
    rejected silently.  Neither is raised to the caller.
    """
    try:
        return verify(payload, test_run_id)
    except CorrelationParseError as exc:
        log.warning("Discarding unparseable payload: %s", exc)
        return None
    except CorrelationMismatch as exc:
        log.debug("Discarding foreign payload: %s", exc)
        return None
