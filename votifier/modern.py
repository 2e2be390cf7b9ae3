"""
modern.py — Votifier V2: HMAC-SHA256 signed JSON envelopes.

Envelope:

    {"payload": "<json string>", "signature": "<base64 HMAC-SHA256>"}

The signature covers the payload *string exactly as received*. We never
re-serialise before verifying; senders that emit non-canonical JSON would
stop verifying if we did.

Inner payload:

    {"serviceName", "username", "address", "timestamp", "challenge"?}

Over the raw socket the challenge is mandatory and must match the one we
sent in the greeting. Over HTTP there is no challenge to check.
"""

import hmac
import json
from typing import Any, Dict, Optional

from . import crypto
from .errors import ChallengeError, SignatureError, VoteParseError
from .tokens import ServiceTokenTable
from .vote import Vote, now_ms

# Anything below this is taken to be seconds, not milliseconds.
SECONDS_THRESHOLD = 1_000_000_000_000


def _load_object(text: str, what: str) -> Dict[str, Any]:
    try:
        obj = json.loads(text)
    except (json.JSONDecodeError, TypeError) as exc:
        raise VoteParseError(f"Invalid V2 {what} JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise VoteParseError(f"V2 {what} is not a JSON object")
    return obj


def _required_str(obj: Dict[str, Any], field: str, error: str) -> str:
    value = obj.get(field)
    if not isinstance(value, str) or not value.strip():
        raise VoteParseError(error)
    return value


def _coerce_timestamp(raw: Any) -> int:
    # bool is an int subclass; true/false is not a timestamp
    if isinstance(raw, bool) or raw is None:
        return 0
    if isinstance(raw, (int, float)):
        try:
            return int(raw)
        except (OverflowError, ValueError):
            # Infinity / NaN, which json.loads lets through
            return 0
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            return 0
    return 0


def normalize_timestamp(timestamp: int) -> int:
    """Seconds → ms, non-positive → now, otherwise leave it alone."""
    if 0 < timestamp < SECONDS_THRESHOLD:
        return timestamp * 1000
    if timestamp <= 0:
        return now_ms()
    return timestamp


def _check_challenge(inner: Dict[str, Any], expected: str) -> None:
    challenge = inner.get("challenge")
    if not isinstance(challenge, str) or not challenge.strip():
        raise ChallengeError("V2 payload missing challenge")
    if not hmac.compare_digest(expected.encode("utf-8"), challenge.encode("utf-8")):
        raise ChallengeError("Challenge mismatch")


def parse(json_payload: str, tokens: ServiceTokenTable, expected_challenge: Optional[str] = None) -> Vote:
    """
    Parse and authenticate a V2 envelope.

    Checks run in a fixed order: envelope shape, inner JSON, required
    fields, challenge (only when expected_challenge is given), token
    lookup, then the signature. A challenge mismatch is therefore reported
    as such even when the signature would also have failed.

    Raises:
        VoteParseError: malformed envelope or inner payload.
        ChallengeError: challenge missing or different (socket mode).
        SignatureError: no token for the service, or a bad signature.
    """
    wrapper = _load_object(json_payload, "envelope")
    payload = _required_str(wrapper, "payload", "V2 payload missing required 'payload' field")
    signature = _required_str(wrapper, "signature", "V2 payload missing required 'signature' field")

    inner = _load_object(payload, "inner payload")
    service_name = _required_str(inner, "serviceName", "V2 payload missing serviceName")
    username = _required_str(inner, "username", "V2 payload missing username")

    if expected_challenge is not None:
        _check_challenge(inner, expected_challenge)

    token = tokens.get_token(service_name)
    if token is None:
        raise SignatureError(f"No token configured for service: {service_name}")

    if not crypto.hmac_verify(payload, signature, token):
        raise SignatureError(f"Invalid signature for service: {service_name}")

    address = inner.get("address")
    timestamp = normalize_timestamp(_coerce_timestamp(inner.get("timestamp")))

    try:
        return Vote(service_name, username, address if isinstance(address, str) else "", timestamp)
    except ValueError as exc:
        raise VoteParseError(f"Invalid vote data: {exc}") from exc


def build_envelope(vote_fields: Dict[str, Any], token: str) -> Dict[str, str]:
    """
    Sender side: serialise the inner payload once and sign that exact string.
    Used by the test-vote client and the test suite.
    """
    payload = json.dumps(vote_fields, separators=(",", ":"))
    return {"payload": payload, "signature": crypto.hmac_sign_b64(payload, token)}
