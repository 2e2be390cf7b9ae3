from pathlib import Path

from votifier.keystore import KeyStore

# Quick one-off keygen for a fresh receiver.
# - RSA-2048, the size every Votifier V1 sender expects.
# - Writes ./keys/rsa.key (PKCS#8, unencrypted) and ./keys/rsa.pub;
#   an existing pair is loaded and left alone.

# 1) Load or create the pair under ./keys.
key_dir = Path("keys")
keys = KeyStore()
keys.load_or_generate(key_dir)

# 2) Print the public key so it can be pasted into voting-site panels.
print("Votifier public key (PEM):")
print(keys.public_key_pem(), end="")
print("Single-line form:")
print(keys.public_key_base64())
