"""
votifier — a Votifier-compatible vote receiver.

Voting sites tell us "user X voted on site Y" over one of two protocols:
- V1: RSA-2048 (PKCS#1 v1.5) encrypted text block, raw or Base64.
- V2: JSON envelope signed with a per-site HMAC-SHA256 token.

Both arrive either on the classic raw TCP socket (with a per-connection
challenge for V2) or as an HTTP POST body. Accepted votes are recorded in a
small last-vote store (memory or SQLite) and handed to any registered
listeners.

Keys live in <keyPath>/rsa.key and rsa.pub and are generated on first start.
"""
__version__ = "1.0.0"

__all__ = [
    "client",
    "config",
    "crypto",
    "detector",
    "errors",
    "framing",
    "http_server",
    "keystore",
    "legacy",
    "logger",
    "modern",
    "processor",
    "run_server",
    "server",
    "storage",
    "tokens",
    "tracker",
    "vote",
]
