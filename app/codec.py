import base64
import json
from typing import Any, Dict

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes


class PayloadCodec:
    """
    AES-256-CBC encoding used by the gateway for request and response bodies.

    The key is the merchant encryption key; the IV is its first 16 characters.
    """

    def __init__(self, encryption_key: str):
        key = encryption_key.encode("utf-8")
        if len(key) != 32:
            raise ValueError("Encryption key must be 32 bytes long")
        self._key = key
        self._iv = key[:16]

    def _cipher(self) -> Cipher:
        return Cipher(algorithms.AES(self._key), modes.CBC(self._iv))

    def encrypt(self, data: Dict[str, Any]) -> str:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(json.dumps(data).encode("utf-8")) + padder.finalize()
        encryptor = self._cipher().encryptor()
        return base64.b64encode(encryptor.update(padded) + encryptor.finalize()).decode("ascii")

    def decrypt(self, payload: str) -> Dict[str, Any]:
        decryptor = self._cipher().decryptor()
        padded = decryptor.update(base64.b64decode(payload)) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plain = unpadder.update(padded) + unpadder.finalize()
        return json.loads(plain.decode("utf-8"))
