"""
keystore.py — owns the server's RSA-2048 key pair.

Lifecycle: generate once if nothing is on disk, persist as two PEM files
(`rsa.key` PKCS#8 private, `rsa.pub` X.509 public), load on every later
start. The private key never leaves this object except through
`private_key` for the V1 decrypt path.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from cryptography.hazmat.primitives.asymmetric import rsa

from . import crypto
from .errors import KeyStoreError, KeysNotLoadedError

log = logging.getLogger(__name__)

PRIVATE_KEY_FILE = "rsa.key"
PUBLIC_KEY_FILE = "rsa.pub"

_PEM_PUBLIC_BEGIN = "-----BEGIN PUBLIC KEY-----"
_PEM_PUBLIC_END = "-----END PUBLIC KEY-----"

PathLike = Union[str, Path]


class KeyStore:
    """Holds at most one key pair; generate/load replace it, save persists it."""

    def __init__(self) -> None:
        self._private_key: Optional[rsa.RSAPrivateKey] = None
        self._public_key: Optional[rsa.RSAPublicKey] = None

    # ------------------------------
    # Lifecycle
    # ------------------------------

    def generate(self) -> rsa.RSAPublicKey:
        """New 2048-bit pair in memory. Does not touch the disk."""
        self._private_key, self._public_key = crypto.generate_rsa2048()
        return self._public_key

    def save(self, directory: PathLike) -> None:
        """
        Write both PEM files under directory, creating it if needed.

        Raises:
            KeysNotLoadedError: nothing to save yet.
            KeyStoreError: the directory/files could not be written.
        """
        if self._private_key is None or self._public_key is None:
            raise KeysNotLoadedError("No key pair to save - generate or load keys first")

        directory = Path(directory)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            (directory / PRIVATE_KEY_FILE).write_bytes(crypto.export_privkey_pem(self._private_key))
            (directory / PUBLIC_KEY_FILE).write_bytes(crypto.export_pubkey_pem(self._public_key))
        except OSError as exc:
            raise KeyStoreError(f"Failed to save RSA keys to {directory}: {exc}") from exc

    def load(self, directory: PathLike) -> rsa.RSAPublicKey:
        """
        Read and decode both PEM files from directory.

        Raises:
            KeyStoreError: a file is missing/unreadable or does not decode
                to an RSA key.
        """
        directory = Path(directory)
        try:
            priv_pem = (directory / PRIVATE_KEY_FILE).read_bytes()
            pub_pem = (directory / PUBLIC_KEY_FILE).read_bytes()
        except OSError as exc:
            raise KeyStoreError(f"Failed to read RSA keys from {directory}: {exc}") from exc

        try:
            private_key = crypto.load_privkey_pem(priv_pem)
            public_key = crypto.load_pubkey_pem(pub_pem)
        except (ValueError, TypeError) as exc:
            raise KeyStoreError(f"Failed to load RSA keys from {directory}: {exc}") from exc

        self._private_key, self._public_key = private_key, public_key
        return public_key

    def exists(self, directory: PathLike) -> bool:
        directory = Path(directory)
        return (directory / PRIVATE_KEY_FILE).is_file() and (directory / PUBLIC_KEY_FILE).is_file()

    def load_or_generate(self, directory: PathLike) -> rsa.RSAPublicKey:
        """Startup helper: load existing keys, or create and persist new ones."""
        if self.exists(directory):
            log.info("Loading RSA keys from %s", directory)
            return self.load(directory)

        log.info("Generating new RSA key pair in %s", directory)
        public_key = self.generate()
        self.save(directory)
        log.info("PUBLIC KEY (configure this on voting sites):\n%s", self.public_key_pem())
        return public_key

    # ------------------------------
    # Accessors
    # ------------------------------

    @property
    def has_keys(self) -> bool:
        return self._private_key is not None

    @property
    def private_key(self) -> Optional[rsa.RSAPrivateKey]:
        return self._private_key

    @property
    def public_key(self) -> Optional[rsa.RSAPublicKey]:
        return self._public_key

    def public_key_pem(self) -> str:
        if self._public_key is None:
            raise KeysNotLoadedError("Keys not initialized")
        return crypto.export_pubkey_pem(self._public_key).decode("ascii")

    def public_key_base64(self) -> str:
        """The PEM body on one line; most voting-site panels want this form."""
        pem = self.public_key_pem()
        body = pem.replace(_PEM_PUBLIC_BEGIN, "").replace(_PEM_PUBLIC_END, "")
        return "".join(body.split())
