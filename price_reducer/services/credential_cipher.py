import logging
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger(__name__)


class CredentialDecryptError(ValueError):
    pass


class CredentialCipher:
    """
    refresh token 암복호화 (AES-256-CBC, PKCS7).
    저장 형식: "<iv hex>:<ciphertext hex>"
    """

    def __init__(self, key_hex: str):
        if not key_hex:
            raise ValueError("ENCRYPTION_KEY가 설정되어 있지 않습니다")
        key = bytes.fromhex(key_hex)
        if len(key) != 32:
            raise ValueError("ENCRYPTION_KEY는 32바이트(hex 64자)여야 합니다")
        self._key = key

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ""
        iv = os.urandom(16)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        data = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(data) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, encrypted: str) -> str:
        if not encrypted:
            return ""
        try:
            iv_hex, cipher_hex = encrypted.split(":", 1)
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(cipher_hex)
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            data = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return (unpadder.update(data) + unpadder.finalize()).decode("utf-8")
        except ValueError as e:
            # 키 불일치/포맷 오류는 상세 내용 없이 로그 (토큰 노출 방지)
            logger.error(f"[TOKEN] Failed to decrypt credential: {type(e).__name__}")
            raise CredentialDecryptError("암호화된 토큰을 복호화할 수 없습니다") from e
