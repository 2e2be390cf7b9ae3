"""
errors.py — exception taxonomy for the vote receiver.

Parsers, crypto helpers, the key store and the storage backends raise these.
The processor turns them into a `VoteResult` so transports never have to
catch exception types themselves.
"""


class VotifierError(Exception):
    """Base class for everything this package raises on purpose."""


class VoteParseError(VotifierError):
    """Malformed payload structure or fields."""


class DecryptionError(VotifierError):
    """
    Legacy (V1) RSA decryption failed.

    The message is always the same; the underlying reason is only chained
    as __cause__ for server-side logs.
    """


class SignatureError(VotifierError):
    """V2 HMAC check failed, or no token is configured for the service."""


class ChallengeError(VotifierError):
    """V2 challenge missing or not the one issued on this connection."""


class PayloadTooLargeError(VotifierError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"Request body exceeds maximum size of {limit} bytes")
        self.limit = limit


class InvalidFramingError(VotifierError):
    """Bad magic/length on the raw socket."""


class StorageError(VotifierError):
    """Vote storage backend could not be initialised."""


class KeyStoreError(VotifierError):
    """RSA key generation, loading or saving failed."""


class KeysNotLoadedError(KeyStoreError, RuntimeError):
    """Asked for keys before any were generated or loaded."""


class ConfigError(VotifierError):
    pass
