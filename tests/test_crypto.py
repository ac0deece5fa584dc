import hashlib
import sys
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from ecdsa import NIST256p

# Ensure project root is on sys.path for direct `python tests/test_crypto.py` runs.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bookvault import crypto  # noqa: E402
from bookvault.errors import AuthenticationFailed, InvalidPoint  # noqa: E402

GREEN = "\033[92m"
CYAN = "\033[96m"
YELLOW = "\033[93m"
RESET = "\033[0m"


def heading(name: str, color: str = CYAN):
    print(f"\n{color}--- {name} ---{RESET}")


def test_keypair_is_compressed_p256_point():
    heading("test_keypair_is_compressed_p256_point", color=YELLOW)
    priv, pub = crypto.generate_keypair()
    assert len(pub) == 33
    assert pub[0] in (2, 3)
    # Loading should yield the same public key
    assert crypto.load_public_key(pub).public_numbers() == priv.public_key().public_numbers()


def test_shared_secret_agrees_on_both_sides():
    heading("test_shared_secret_agrees_on_both_sides", color=GREEN)
    priv_a, pub_a = crypto.generate_keypair()
    priv_b, pub_b = crypto.generate_keypair()
    secret_ab = crypto.derive_shared_secret(priv_a, pub_b)
    assert secret_ab == crypto.derive_shared_secret(priv_b, pub_a)
    assert len(secret_ab) == 32


def test_shared_secret_hashes_compressed_shared_point():
    heading("test_shared_secret_hashes_compressed_shared_point", color=GREEN)
    priv_a, _ = crypto.generate_keypair()
    priv_b, pub_b = crypto.generate_keypair()
    # (a * b) * G computed independently through cryptography's own key derivation
    order = NIST256p.order
    ab = priv_a.private_numbers().private_value * priv_b.private_numbers().private_value % order
    expected_point = ec.derive_private_key(ab, crypto.CURVE).public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.CompressedPoint,
    )
    assert crypto.shared_point(priv_a, pub_b) == expected_point
    assert crypto.derive_shared_secret(priv_a, pub_b) == hashlib.sha256(expected_point).digest()
    # Hashing only the x-coordinate gives a different key
    x_only = priv_a.exchange(ec.ECDH(), crypto.load_public_key(pub_b))
    assert crypto.derive_shared_secret(priv_a, pub_b) != hashlib.sha256(x_only).digest()


def test_shared_secret_rejects_invalid_point():
    heading("test_shared_secret_rejects_invalid_point", color=YELLOW)
    priv, _ = crypto.generate_keypair()
    with pytest.raises(InvalidPoint):
        crypto.derive_shared_secret(priv, b"\x02" + b"\xff" * 32)
    with pytest.raises(InvalidPoint):
        crypto.derive_shared_secret(priv, b"not a point")


def test_aead_layout_and_roundtrip():
    heading("test_aead_layout_and_roundtrip", color=GREEN)
    key = crypto.hash_bytes(b"key-material")  # derive deterministic key for test
    plaintext = b"confidential payload"
    blob = crypto.aead_encrypt(key, plaintext)
    # nonce || ciphertext || tag
    assert len(blob) == crypto.NONCE_SIZE + len(plaintext) + crypto.TAG_SIZE
    assert crypto.aead_decrypt(key, blob) == plaintext
    # Fresh nonce per call
    assert crypto.aead_encrypt(key, plaintext)[:12] != blob[:12]


def test_aead_wrong_key_and_tampering_fail_the_same_way():
    heading("test_aead_wrong_key_and_tampering_fail_the_same_way", color=GREEN)
    key = crypto.hash_bytes(b"right")
    blob = crypto.aead_encrypt(key, b"secret")

    with pytest.raises(AuthenticationFailed) as wrong_key:
        crypto.aead_decrypt(crypto.hash_bytes(b"wrong"), blob)
    tampered = blob[:-1] + bytes([blob[-1] ^ 1])
    with pytest.raises(AuthenticationFailed) as corrupted:
        crypto.aead_decrypt(key, tampered)
    with pytest.raises(AuthenticationFailed):
        crypto.aead_decrypt(key, blob[:20])
    assert str(wrong_key.value) == str(corrupted.value)


def test_xor_bytes():
    heading("test_xor_bytes", color=YELLOW)
    a, b = crypto.random_seed(), crypto.random_seed()
    assert crypto.xor_bytes(crypto.xor_bytes(a, b), b) == a
    with pytest.raises(ValueError):
        crypto.xor_bytes(a, b[:5])


if __name__ == "__main__":
    # Running as a script shows verbose pytest output in the terminal.
    raise SystemExit(pytest.main([__file__, "-vv", "-s", "--capture=no"]))
