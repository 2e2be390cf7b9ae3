"""
V1 (RSA) vote parser tests
"""

import pytest

from votifier import crypto, legacy
from votifier.client import build_v1_payload, build_v1_payload_b64
from votifier.errors import DecryptionError, VoteParseError
from votifier.vote import now_ms


class TestParse:
    """Tests for parsing decrypted V1 blocks."""

    def test_valid_block(self):
        vote = legacy.parse(b"VOTE\nTopSites\nSteve\n1.2.3.4\n1700000000000\n")
        assert vote.service_name == "TopSites"
        assert vote.username == "Steve"
        assert vote.address == "1.2.3.4"
        assert vote.timestamp == 1700000000000

    def test_header_case_insensitive(self):
        vote = legacy.parse(b"vote\nTopSites\nSteve\n1.2.3.4\n42")
        assert vote.timestamp == 42

    def test_fields_are_trimmed(self):
        vote = legacy.parse(b"VOTE\n  TopSites \n Steve\t\n 1.2.3.4 \n 5 \n")
        assert (vote.service_name, vote.username, vote.address, vote.timestamp) == ("TopSites", "Steve", "1.2.3.4", 5)

    def test_bad_timestamp_falls_back_to_now(self):
        before = now_ms()
        vote = legacy.parse(b"VOTE\nTopSites\nSteve\n1.2.3.4\nyesterday\n")
        assert before <= vote.timestamp <= now_ms()

    def test_empty(self):
        with pytest.raises(VoteParseError, match="null or empty"):
            legacy.parse(b"")

    def test_too_few_lines(self):
        with pytest.raises(VoteParseError, match="at least 5 lines, got 3"):
            legacy.parse(b"VOTE\nTopSites\nSteve\n")

    def test_wrong_header(self):
        with pytest.raises(VoteParseError, match="Invalid vote header"):
            legacy.parse(b"BALLOT\nTopSites\nSteve\n1.2.3.4\n1\n")

    def test_blank_username(self):
        with pytest.raises(VoteParseError):
            legacy.parse(b"VOTE\nTopSites\n   \n1.2.3.4\n1\n")

    def test_invalid_utf8(self):
        with pytest.raises(VoteParseError, match="decode"):
            legacy.parse(b"VOTE\n\xff\xfe\nSteve\n1.2.3.4\n1\n")


class TestDecrypt:
    """Tests for the decrypt-then-parse paths."""

    def test_raw_block(self, keys):
        block = build_v1_payload(keys.public_key, "TopSites", "Steve", "1.2.3.4", 1700000000000)
        assert len(block) == legacy.RSA_BLOCK_SIZE

        vote = legacy.decrypt_and_parse(block, keys.private_key)
        assert vote.username == "Steve"
        assert vote.timestamp == 1700000000000

    def test_base64_block(self, keys):
        payload = build_v1_payload_b64(keys.public_key, "TopSites", "Alex", "", 1)
        vote = legacy.decode_and_parse(payload, keys.private_key)
        assert vote.username == "Alex"
        assert vote.address == ""

    def test_wrapped_base64(self, keys):
        payload = build_v1_payload_b64(keys.public_key, "TopSites", "Alex", "", 1)
        wrapped = "\n".join(payload[i:i + 76] for i in range(0, len(payload), 76))
        assert legacy.decode_and_parse(wrapped, keys.private_key).username == "Alex"

    def test_invalid_base64(self, keys):
        with pytest.raises(VoteParseError, match="Invalid Base64"):
            legacy.decode_and_parse("@@@not base64@@@", keys.private_key)

    def test_wrong_key(self, keys, other_keys):
        block = build_v1_payload(keys.public_key, "TopSites", "Steve")
        with pytest.raises(DecryptionError):
            legacy.decrypt_and_parse(block, other_keys.private_key)

    def test_no_key(self):
        with pytest.raises(DecryptionError, match="not initialized"):
            legacy.decrypt_and_parse(b"\x00" * 256, None)

    def test_encrypted_garbage_is_parse_error(self, keys):
        block = crypto.rsa_encrypt(b"hello world", keys.public_key)
        with pytest.raises(VoteParseError):
            legacy.decrypt_and_parse(block, keys.private_key)


class TestScenario:
    """The canonical V1 example vote."""

    def test_hyvote_alice(self, keys):
        plaintext = b"VOTE\nHyvote\nAlice\n1.2.3.4\n1700000000000\n"
        payload = crypto.b64encode(crypto.rsa_encrypt(plaintext, keys.public_key))
        vote = legacy.decode_and_parse(payload, keys.private_key)
        assert (vote.service_name, vote.username, vote.address, vote.timestamp) == (
            "Hyvote", "Alice", "1.2.3.4", 1700000000000,
        )
