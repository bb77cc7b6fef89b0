import hashlib
import uuid


def payment_hash(session_id, license_plate: str) -> str:
    """MD5 of session id + plate as lowercase hex. An audit token, not a secret."""
    return hashlib.md5(f"{session_id}{license_plate}".encode("utf-8")).hexdigest()


def transaction_validation_token() -> str:
    return uuid.uuid4().hex
