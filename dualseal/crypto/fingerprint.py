# dualseal/crypto/fingerprint.py
"""
Document fingerprint committed on-ledger under homomorphic encryption.

Polynomial rolling hash (multiplier 31) over Unicode code points, wrapped to a
signed 32-bit integer and folded into [0, 2^31 - 2] so it always fits the
unsigned 32-bit plaintext domain of the ledger ciphertext.

This is tamper evidence, not a cryptographic commitment: the 31-bit space
collides easily ("Aa" and "BB" share a fingerprint) and an adversary can forge
a second document with the same value on purpose.
"""

FINGERPRINT_MODULUS = 2**31 - 1
_MASK32 = 0xFFFFFFFF


def fingerprint(text: str) -> int:
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & _MASK32
    if h & 0x80000000:
        h -= 1 << 32
    return abs(h) % FINGERPRINT_MODULUS
