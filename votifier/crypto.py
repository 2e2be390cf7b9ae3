"""
crypto.py — RSA and HMAC helpers for both Votifier protocols.

Why this exists:
- Keep all padding/encoding details in one place so the parsers can call
  `rsa_decrypt` / `hmac_verify` without caring how they work.
- V1 senders encrypt with RSA PKCS#1 v1.5. That is not what we'd pick for a
  new protocol (OAEP is), but every existing voting site speaks it, so we
  have to as well.
- V2 senders sign the payload string with HMAC-SHA256 and a per-site token.

Notes:
- Functions take/return bytes for raw data and str for base64 text.
- Nothing here tells a caller *why* a decrypt or verify failed.
"""

import base64
import binascii
import hashlib
import hmac
from typing import Tuple, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .errors import DecryptionError

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

_DECRYPT_FAILED = "Failed to decrypt vote data - corrupted or tampered payload"


# -----------------------------
# Base64 helpers (standard alphabet)
# -----------------------------

def b64encode(data: bytes) -> str:
    """Standard Base64 with padding, as the Votifier senders use."""
    return base64.b64encode(data).decode("ascii")


def b64decode(data: Union[str, bytes]) -> bytes:
    """
    Strict Base64 decode. Raises binascii.Error (a ValueError) on anything
    outside the alphabet instead of silently skipping it.
    """
    if isinstance(data, str):
        data = data.encode("ascii")
    return base64.b64decode(data, validate=True)


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


# -------------
# RSA key utils
# -------------

def generate_rsa2048() -> Tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    """Generate a fresh RSA-2048 keypair (public exponent 65537)."""
    priv = rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=RSA_KEY_SIZE)
    return priv, priv.public_key()


def export_privkey_pem(priv: rsa.RSAPrivateKey) -> bytes:
    """
    Export private key in PKCS#8 (unencrypted) form.
    This is the raw key; whoever writes it to disk owns its permissions.
    """
    return priv.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def export_pubkey_pem(pub: rsa.RSAPublicKey) -> bytes:
    """X.509 SubjectPublicKeyInfo PEM, what voting sites ask for."""
    return pub.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def load_privkey_pem(pem_bytes: bytes) -> rsa.RSAPrivateKey:
    """Load an unencrypted PKCS#8 PEM private key."""
    key = serialization.load_pem_private_key(pem_bytes, password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise TypeError("Private key is not an RSA key")
    return key


def load_pubkey_pem(pem_bytes: bytes) -> rsa.RSAPublicKey:
    key = serialization.load_pem_public_key(pem_bytes)
    if not isinstance(key, rsa.RSAPublicKey):
        raise TypeError("Public key is not an RSA key")
    return key


# ---------------------------
# Encryption & Decryption API
# ---------------------------

def rsa_encrypt(plaintext: bytes, pub: rsa.RSAPublicKey) -> bytes:
    """
    Encrypt bytes with RSA PKCS#1 v1.5, the way V1 voting sites do.
    Used by the test-vote client; the server itself only decrypts.
    """
    return pub.encrypt(plaintext, padding.PKCS1v15())


def rsa_decrypt(ciphertext: bytes, priv: rsa.RSAPrivateKey) -> bytes:
    """
    Reverse of rsa_encrypt(). Any failure (bad padding, wrong block size,
    missing key) becomes one DecryptionError with a fixed message.
    """
    try:
        return priv.decrypt(ciphertext, padding.PKCS1v15())
    except Exception as exc:
        raise DecryptionError(_DECRYPT_FAILED) from exc


# -------------------------
# HMAC signing (V2 protocol)
# -------------------------

def hmac_sign(message: Union[str, bytes], secret: Union[str, bytes]) -> bytes:
    """Raw HMAC-SHA256 digest of message under secret."""
    return hmac.new(_to_bytes(secret), _to_bytes(message), hashlib.sha256).digest()


def hmac_sign_b64(message: Union[str, bytes], secret: Union[str, bytes]) -> str:
    """hmac_sign() as Base64 text, the form V2 envelopes carry."""
    return b64encode(hmac_sign(message, secret))


def hmac_verify(message: Union[str, bytes], signature_b64: str, secret: Union[str, bytes]) -> bool:
    """
    Check a Base64 HMAC-SHA256 signature in constant time.
    Returns False on any failure (bad Base64, wrong type, wrong digest).
    """
    try:
        expected = hmac_sign(message, secret)
        actual = b64decode(signature_b64)
        return hmac.compare_digest(expected, actual)
    except (binascii.Error, ValueError, TypeError, AttributeError):
        return False
