from enum import Enum
from typing import Optional


class Protocol(Enum):
    """Votifier wire protocols the receiver understands."""

    V1_RSA = "V1"
    V2_JSON = "V2"
    UNKNOWN = "UNKNOWN"

    def __str__(self) -> str:
        return self.value


def detect(payload: Optional[str]) -> Protocol:
    """
    Classify a textual payload without parsing it.

    Blank → UNKNOWN. A JSON-looking object that mentions both "payload" and
    "signature" → V2_JSON. Anything else is assumed to be Base64 RSA
    ciphertext (V1_RSA); the V1 parser will reject it if it isn't.
    """
    if payload is None or not payload.strip():
        return Protocol.UNKNOWN

    trimmed = payload.strip()
    if trimmed.startswith("{") and '"payload"' in trimmed and '"signature"' in trimmed:
        return Protocol.V2_JSON

    return Protocol.V1_RSA
