"""
Protocol detector tests
"""

import pytest

from votifier.detector import Protocol, detect


class TestDetect:
    """Tests for payload classification."""

    @pytest.mark.parametrize("payload", [None, "", "   ", "\n\t"])
    def test_blank_is_unknown(self, payload):
        assert detect(payload) is Protocol.UNKNOWN

    def test_v2_envelope(self):
        assert detect('{"payload":"{}","signature":"abc"}') is Protocol.V2_JSON

    def test_v2_with_whitespace(self):
        assert detect('  \n{"signature": "x", "payload": "y"}  ') is Protocol.V2_JSON

    def test_json_without_signature_is_v1(self):
        assert detect('{"payload":"{}"}') is Protocol.V1_RSA

    def test_base64_is_v1(self):
        assert detect("QUJDRA==") is Protocol.V1_RSA

    def test_str(self):
        assert str(Protocol.V1_RSA) == "V1"
        assert str(Protocol.V2_JSON) == "V2"
