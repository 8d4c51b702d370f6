# dualseal/crypto/cipher.py
"""
Payload cipher for the off-ledger document.

Blob layout (byte-exact, shared with previously stored blobs):

    salt (16) || nonce (12) || AES-256-GCM ciphertext || tag (16)

The key is derived per call with PBKDF2-HMAC-SHA256 (100,000 iterations) from
the passphrase and a fresh salt, so two seals of the same text never share a
key or a nonce. No associated data is bound.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from dualseal.core.errors import AuthenticationError

SALT_SIZE = 16
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
KDF_ITERATIONS = 100_000

HEADER_SIZE = SALT_SIZE + NONCE_SIZE


def derive_key(passphrase: str, salt: bytes) -> bytes:
    if len(salt) != SALT_SIZE:
        raise ValueError(f"salt must be exactly {SALT_SIZE} bytes")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def seal(plaintext: str, passphrase: str) -> bytes:
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    key = derive_key(passphrase, salt)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return salt + nonce + ciphertext


def open_blob(blob: bytes, passphrase: str) -> str:
    """Raises AuthenticationError for any blob that does not verify. Never returns partial text."""
    if len(blob) < HEADER_SIZE + TAG_SIZE:
        raise AuthenticationError(f"Blob too short ({len(blob)} bytes) to hold salt, nonce and tag")

    salt = blob[:SALT_SIZE]
    nonce = blob[SALT_SIZE:HEADER_SIZE]
    ciphertext = blob[HEADER_SIZE:]

    key = derive_key(passphrase, salt)
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag:
        raise AuthenticationError("AES-GCM tag verification failed (tampered blob or wrong passphrase)")

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise AuthenticationError("Decrypted payload is not valid UTF-8")
