"""Ed25519 signature checks for base-58 encoded wallet keys."""
import base58
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

PUBLIC_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64


def _decode(value: str, expected_length: int, what: str) -> bytes:
    try:
        raw = base58.b58decode(value)
    except ValueError as e:
        raise ValueError(f"Invalid base-58 {what}") from e
    if len(raw) != expected_length:
        raise ValueError(f"Invalid {what} length: {len(raw)} bytes, expected {expected_length}")
    return raw


def validate_signature(public_key: str, message: str, signature: str) -> bool:
    """
    Check that ``signature`` over ``message`` was made by ``public_key``.

    Args:
        public_key: Base-58 wallet address (32-byte Ed25519 public key)
        message: Signed text, verified as its UTF-8 bytes
        signature: Base-58 64-byte Ed25519 signature

    Returns:
        True if the signature verifies, False if it does not

    Raises:
        ValueError: If the key or signature is not valid base-58 or has the wrong length
    """
    key_bytes = _decode(public_key, PUBLIC_KEY_LENGTH, "public key")
    signature_bytes = _decode(signature, SIGNATURE_LENGTH, "signature")

    verify_key = VerifyKey(key_bytes)
    try:
        verify_key.verify(message.encode("utf-8"), signature_bytes)
    except BadSignatureError:
        return False
    return True
