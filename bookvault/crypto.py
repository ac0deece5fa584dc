import os
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from ecdsa import NIST256p, VerifyingKey

from .errors import AuthenticationFailed, InvalidPoint

CURVE = ec.SECP256R1()
KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
SEED_SIZE = 32


def generate_keypair() -> Tuple[ec.EllipticCurvePrivateKey, bytes]:
    """Generate a P-256 keypair (private key, compressed SEC1 public point)."""
    priv = ec.generate_private_key(CURVE)
    pub = priv.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.CompressedPoint,
    )
    return priv, pub


def load_public_key(encoded: bytes) -> ec.EllipticCurvePublicKey:
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, encoded)
    except (ValueError, TypeError) as exc:
        raise InvalidPoint("peer public key is not a P-256 point") from exc


def hash_bytes(data: bytes) -> bytes:
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize()


def shared_point(private_key: ec.EllipticCurvePrivateKey, peer_public: bytes) -> bytes:
    """ECDH shared point d * Q as a compressed SEC1 encoding (33 bytes)."""
    load_public_key(peer_public)
    peer = VerifyingKey.from_string(peer_public, curve=NIST256p).pubkey.point
    point = peer * private_key.private_numbers().private_value
    return point.to_bytes("compressed")


def derive_shared_secret(private_key: ec.EllipticCurvePrivateKey, peer_public: bytes) -> bytes:
    """SHA-256 of the compressed ECDH shared point, used as an AES-256 key."""
    return hash_bytes(shared_point(private_key, peer_public))


def aead_encrypt(key: bytes, plaintext: bytes) -> bytes:
    """Encrypt with AES-256-GCM. Returns nonce || ciphertext || tag."""
    nonce = os.urandom(NONCE_SIZE)
    # AESGCM already appends the 16-byte tag to the ciphertext.
    return nonce + AESGCM(key).encrypt(nonce, plaintext, None)


def aead_decrypt(key: bytes, blob: bytes) -> bytes:
    """Inverse of aead_encrypt. Any failure surfaces as AuthenticationFailed."""
    if len(blob) < NONCE_SIZE + TAG_SIZE:
        raise AuthenticationFailed()
    nonce, ct_with_tag = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, ct_with_tag, None)
    except InvalidTag:
        raise AuthenticationFailed() from None


def xor_bytes(left: bytes, right: bytes) -> bytes:
    if len(left) != len(right):
        raise ValueError("xor operands must have equal length")
    return bytes(a ^ b for a, b in zip(left, right))


def random_seed() -> bytes:
    return os.urandom(SEED_SIZE)


def generate_item_key() -> bytes:
    """Fresh symmetric key for encrypting one catalog blob."""
    return AESGCM.generate_key(bit_length=KEY_SIZE * 8)
