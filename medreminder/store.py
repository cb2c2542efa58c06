# medreminder/store.py
import json
import os
import uuid
from pathlib import Path
from threading import RLock
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import StorageReadError
from .logs import logger

_CRYPTO_LOCK = RLock()

MEDICINES = "medicines"
DOSE_LOG = "dose_log"

# -------------------------
# Crypto utilities
# -------------------------
def _atomic_write_bytes(path: Path, data: bytes):
    tmp = path.with_suffix(path.suffix + f".tmp.{uuid.uuid4().hex}")
    tmp.parent.mkdir(parents=True, exist_ok=True)
    tmp.write_bytes(data)
    tmp.replace(path)

def aes_encrypt(data: bytes, key: bytes, aad: Optional[bytes] = None) -> bytes:
    aes = AESGCM(key)
    nonce = os.urandom(12)
    return nonce + aes.encrypt(nonce, data, aad)

def aes_decrypt(data: bytes, key: bytes, aad: Optional[bytes] = None) -> bytes:
    if not data or len(data) < 12:
        raise InvalidTag("ciphertext too short")
    aes = AESGCM(key)
    nonce, ct = data[:12], data[12:]
    return aes.decrypt(nonce, ct, aad)

def get_or_create_key(key_path: Path) -> bytes:
    with _CRYPTO_LOCK:
        if key_path.exists():
            d = key_path.read_bytes()
            if len(d) >= 32:
                return d[:32]
            logger.warning("key file too short; generating a new key")
        key = AESGCM.generate_key(bit_length=256)
        _atomic_write_bytes(key_path, key)
        logger.info("key stored: file")
        return key

# -------------------------
# Encrypted record store
# -------------------------
class EncryptedStore:
    """
    Named JSON records, each sealed with AES-GCM in its own file.

    The record name is bound as associated data so one record's file cannot
    be swapped in for another's.
    """

    def __init__(self, base_dir: Path, key: bytes):
        if len(key) != 32:
            raise ValueError("AES-256 key must be 32 bytes")
        self.base_dir = Path(base_dir)
        self.key = key
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.base_dir / f"{name}.json.aes"

    def read(self, name: str) -> Optional[Any]:
        """Return the decoded record, or None if it was never written."""
        path = self.path_for(name)
        with _CRYPTO_LOCK:
            if not path.exists():
                return None
            try:
                blob = path.read_bytes()
            except OSError as e:
                raise StorageReadError(name, str(e)) from e
        try:
            pt = aes_decrypt(blob, self.key, name.encode("utf-8"))
        except InvalidTag as e:
            raise StorageReadError(name, "decryption failed") from e
        try:
            return json.loads(pt.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise StorageReadError(name, "malformed JSON") from e

    def write(self, name: str, data: Any):
        pt = json.dumps(data, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        enc = aes_encrypt(pt, self.key, name.encode("utf-8"))
        with _CRYPTO_LOCK:
            _atomic_write_bytes(self.path_for(name), enc)

    def size_kb(self) -> float:
        total = 0
        for name in (MEDICINES, DOSE_LOG):
            p = self.path_for(name)
            if p.exists():
                total += p.stat().st_size
        return total / 1024.0

    @classmethod
    def open(cls, settings) -> "EncryptedStore":
        key = get_or_create_key(settings.key_path)
        return cls(settings.store_dir, key)
