"""
Centralized cryptographic operations for the packager.

Signed files carry a trailer: the RSA-PSS signature over the SHA-256 of the
original bytes, the signature length and a magic marker.
"""

import hashlib
from pathlib import Path
import struct

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .exceptions import SigningError

SIGNATURE_MAGIC = b"TAPSIG01"
_LENGTH_FORMAT = "<I"
_TRAILER_SIZE = struct.calcsize(_LENGTH_FORMAT) + len(SIGNATURE_MAGIC)


def _pss() -> padding.PSS:
    return padding.PSS(
        mgf=padding.MGF1(hashes.SHA256()), salt_length=hashes.SHA256.digest_size
    )


def generate_keys(key_size: int = 4096) -> tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    """Generates a new RSA key pair."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    return private_key, private_key.public_key()


def write_key_pair(
    private_key: rsa.RSAPrivateKey, out_dir: Path, name: str = "signing"
) -> tuple[Path, Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    private_path = out_dir / f"{name}.pem"
    public_path = out_dir / f"{name}.pub.pem"
    private_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    public_path.write_bytes(
        private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return private_path, public_path


def load_private_key(path: Path) -> rsa.RSAPrivateKey:
    if not path.is_file():
        raise SigningError(f"Signing key '{path}' was not found.")
    try:
        key = serialization.load_pem_private_key(path.read_bytes(), password=None)
    except (ValueError, TypeError) as e:
        raise SigningError(f"'{path}' is not an unencrypted PEM private key: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise SigningError(f"'{path}' does not hold an RSA private key.")
    return key


def sign_payload_hash(payload_hash: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    """Signs a 32-byte hash using RSA-PSS."""
    if not isinstance(payload_hash, bytes) or len(payload_hash) != 32:
        raise SigningError("Payload hash must be a 32-byte SHA-256 hash.")

    return private_key.sign(payload_hash, _pss(), hashes.SHA256())


def sign_bytes(data: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    """Returns `data` followed by its signature trailer."""
    signature = sign_payload_hash(hashlib.sha256(data).digest(), private_key)
    return data + signature + struct.pack(_LENGTH_FORMAT, len(signature)) + SIGNATURE_MAGIC


def split_signature(signed: bytes) -> tuple[bytes, bytes]:
    """Splits signed bytes into (payload, signature)."""
    if len(signed) < _TRAILER_SIZE or not signed.endswith(SIGNATURE_MAGIC):
        raise SigningError("Data does not carry a signature trailer.")
    length_end = len(signed) - len(SIGNATURE_MAGIC)
    (length,) = struct.unpack(
        _LENGTH_FORMAT, signed[length_end - struct.calcsize(_LENGTH_FORMAT) : length_end]
    )
    signature_end = length_end - struct.calcsize(_LENGTH_FORMAT)
    if length > signature_end:
        raise SigningError("Signature trailer is corrupt.")
    return signed[: signature_end - length], signed[signature_end - length : signature_end]


def verify_signed_bytes(signed: bytes, public_key: rsa.RSAPublicKey) -> bytes:
    """Checks the trailer of `signed` and returns the original payload."""
    payload, signature = split_signature(signed)
    try:
        public_key.verify(
            signature, hashlib.sha256(payload).digest(), _pss(), hashes.SHA256()
        )
    except InvalidSignature as e:
        raise SigningError("Signature does not match the signed data.") from e
    return payload
