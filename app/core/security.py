"""
安全相关工具

- JWT 访问令牌的签发与解析（python-jose）
- 用户自带API密钥的加解密（AES-256-GCM，按用户派生密钥）
"""

import base64
import binascii
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from jose import JWTError, jwt
from pydantic import ValidationError

from app.core.config import settings
from app.core.exceptions import APIKeyDecryptionError, CredentialsException
from app.schemas.token import TokenPayload

_NONCE_SIZE = 12
_KEY_INFO = b"byok-api-key"


def create_access_token(
    subject: Union[str, Any], expires_delta: Optional[timedelta] = None
) -> str:
    """签发访问令牌"""
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"exp": expire, "sub": str(subject)}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    """解析访问令牌，失败时抛出 CredentialsException"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return TokenPayload(**payload)
    except (JWTError, ValidationError):
        raise CredentialsException()


def _derive_key(user_id: str) -> bytes:
    secret = (settings.API_KEY_ENCRYPTION_SECRET or settings.SECRET_KEY).encode("utf-8")
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=str(user_id).encode("utf-8"),
        info=_KEY_INFO,
    )
    return hkdf.derive(secret)


def encrypt_api_key(api_key: str, user_id: str) -> str:
    """加密API密钥，输出 base64(nonce + 密文)"""
    nonce = os.urandom(_NONCE_SIZE)
    ciphertext = AESGCM(_derive_key(user_id)).encrypt(
        nonce, api_key.encode("utf-8"), str(user_id).encode("utf-8")
    )
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt_api_key(encrypted: str, user_id: str) -> str:
    """解密API密钥；密文损坏或归属用户不匹配时抛出 APIKeyDecryptionError"""
    try:
        raw = base64.b64decode(encrypted.encode("ascii"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise APIKeyDecryptionError(f"密文格式无效: {e}")

    if len(raw) <= _NONCE_SIZE:
        raise APIKeyDecryptionError("密文长度无效")

    nonce, ciphertext = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
    try:
        plaintext = AESGCM(_derive_key(user_id)).decrypt(
            nonce, ciphertext, str(user_id).encode("utf-8")
        )
    except InvalidTag:
        raise APIKeyDecryptionError("密钥校验失败")
    return plaintext.decode("utf-8")
