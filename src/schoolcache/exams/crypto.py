"""
End-to-end encryption for exam distribution.

Exam content is encrypted with a fresh AES-256-GCM key; that key is
wrapped with the receiving device's RSA-OAEP public key. Only the device
holding the matching private key can open the exam offline.
"""

from __future__ import annotations

import base64
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from schoolcache.exceptions import DecryptionError
from schoolcache.types import EncryptedExamRecord, ExamMetadata, now_ms

AES_KEY_BITS = 256
IV_LENGTH = 12
RSA_KEY_BITS = 2048
RSA_PUBLIC_EXPONENT = 65537


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def from_base64(data: str) -> bytes:
    return base64.b64decode(data.encode("ascii"), validate=True)


def generate_exam_key() -> bytes:
    """Generate a random AES-256 content key."""
    return AESGCM.generate_key(bit_length=AES_KEY_BITS)


def encrypt_exam_content(text: str, key: bytes) -> tuple[bytes, bytes]:
    """Encrypt exam text with AES-GCM.

    Returns:
        Tuple of (ciphertext, iv).
    """
    iv = os.urandom(IV_LENGTH)
    ciphertext = AESGCM(key).encrypt(iv, text.encode("utf-8"), None)
    return ciphertext, iv


def decrypt_exam_content(ciphertext: bytes, key: bytes, iv: bytes) -> str:
    """Decrypt exam text, verifying its authentication tag.

    Raises:
        DecryptionError: If the key, IV or ciphertext do not match.
    """
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
    except (InvalidTag, ValueError) as e:
        raise DecryptionError(
            "Exam content failed authentication",
            context={"iv_length": len(iv)},
        ) from e
    return plaintext.decode("utf-8")


def generate_device_key_pair() -> rsa.RSAPrivateKey:
    """Generate the RSA key pair that identifies a device."""
    return rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=RSA_KEY_BITS)


def export_public_key(key: rsa.RSAPublicKey) -> str:
    """Export a public key as base64 SPKI DER."""
    der = key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return to_base64(der)


def import_public_key(data: str) -> rsa.RSAPublicKey:
    key = serialization.load_der_public_key(from_base64(data))
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("Public key is not an RSA key")
    return key


def export_private_key(key: rsa.RSAPrivateKey) -> str:
    """Export a private key as base64 unencrypted PKCS#8 DER."""
    der = key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return to_base64(der)


def import_private_key(data: str) -> rsa.RSAPrivateKey:
    key = serialization.load_der_private_key(from_base64(data), password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("Private key is not an RSA key")
    return key


def wrap_exam_key(key: bytes, public_key: rsa.RSAPublicKey) -> bytes:
    """Encrypt an AES content key for one device."""
    return public_key.encrypt(key, _oaep())


def unwrap_exam_key(wrapped: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    """Recover an AES content key with the device private key.

    Raises:
        DecryptionError: If the key was wrapped for another device.
    """
    try:
        return private_key.decrypt(wrapped, _oaep())
    except ValueError as e:
        raise DecryptionError("Exam key could not be unwrapped") from e


def seal_exam(
    exam_id: str,
    content: str,
    metadata: ExamMetadata,
    public_key: rsa.RSAPublicKey,
    timestamp: int | None = None,
) -> EncryptedExamRecord:
    """Encrypt an exam for a device, ready to be saved in the exam store."""
    key = generate_exam_key()
    ciphertext, iv = encrypt_exam_content(content, key)
    return EncryptedExamRecord(
        exam_id=exam_id,
        encrypted_data=ciphertext,
        iv=iv,
        encrypted_key=wrap_exam_key(key, public_key),
        metadata=metadata,
        timestamp=now_ms() if timestamp is None else timestamp,
    )


def open_exam(record: EncryptedExamRecord, private_key: rsa.RSAPrivateKey) -> str:
    """Decrypt a stored exam with the device private key."""
    key = unwrap_exam_key(record.encrypted_key, private_key)
    return decrypt_exam_content(record.encrypted_data, key, record.iv)
