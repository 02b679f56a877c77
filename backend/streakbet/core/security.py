import hashlib
import hmac
import json
import os
from base64 import b64decode, b64encode
from typing import Any

from Crypto.Cipher import AES
from Crypto.Util.Padding import pad, unpad
from jose import JWTError, jwt
from loguru import logger

from streakbet.core.config import settings


# ─── JWT ──────────────────────────────────────────────────────────────────────

def decode_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return payload
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        raise


# ─── Подпись вебхуков ─────────────────────────────────────────────────────────

def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    """HMAC-SHA256 от сырого тела запроса, hex в заголовке X-Signature."""
    if not signature:
        return False
    expected = sign_payload(body, secret)
    return hmac.compare_digest(expected, signature)


# ─── AES-256 для платёжных реквизитов ─────────────────────────────────────────

def _get_aes_key() -> bytes:
    """Возвращает 32-байтный ключ из настроек (hex или raw)."""
    key_str = settings.aes_encryption_key
    if len(key_str) == 64:  # hex-encoded 32 bytes
        return bytes.fromhex(key_str)
    elif len(key_str) == 32:  # raw 32 bytes
        return key_str.encode()
    else:
        raise ValueError(f"AES key must be 32 bytes (raw) or 64 hex chars, got {len(key_str)}")


def encrypt_aes256(plaintext: str) -> str:
    """Шифрует строку AES-256-CBC. Возвращает base64(iv + ciphertext)."""
    key = _get_aes_key()
    iv = os.urandom(16)
    cipher = AES.new(key, AES.MODE_CBC, iv)
    ciphertext = cipher.encrypt(pad(plaintext.encode("utf-8"), AES.block_size))
    return b64encode(iv + ciphertext).decode("utf-8")


def decrypt_aes256(encrypted: str) -> str:
    """Дешифрует строку, зашифрованную encrypt_aes256."""
    key = _get_aes_key()
    raw = b64decode(encrypted.encode("utf-8"))
    iv = raw[:16]
    ciphertext = raw[16:]
    cipher = AES.new(key, AES.MODE_CBC, iv)
    return unpad(cipher.decrypt(ciphertext), AES.block_size).decode("utf-8")


def encrypt_json(data: dict[str, Any]) -> str:
    return encrypt_aes256(json.dumps(data, separators=(",", ":"), sort_keys=True))


def decrypt_json(encrypted: str) -> dict[str, Any]:
    return json.loads(decrypt_aes256(encrypted))


# ─── Маскирование реквизитов ──────────────────────────────────────────────────

def mask_payment_details(details: dict[str, Any], method: str) -> dict[str, Any]:
    """Реквизиты никогда не уходят клиенту целиком."""
    if not details:
        return {}
    if method == "bank":
        iban = details.get("iban") or ""
        return {
            "iban": f"****{iban[-4:]}" if iban else None,
            "account_name": details.get("account_name"),
            "bank_name": details.get("bank_name"),
        }
    if method == "paypal":
        email = details.get("email") or ""
        if "@" in email:
            local, domain = email.split("@", 1)
            email = f"{local[:2]}****@{domain}"
        return {"email": email or None}
    if method == "crypto":
        wallet = details.get("wallet_address") or ""
        return {
            "wallet_address": f"{wallet[:6]}...{wallet[-4:]}" if wallet else None,
            "network": details.get("network"),
        }
    return {}


# ─── Rate Limiting helpers (Redis-based) ──────────────────────────────────────

async def check_rate_limit(
    redis,
    key: str,
    limit: int,
    window_seconds: int = 60,
) -> bool:
    """
    Проверяет rate limit. Возвращает True если лимит не превышен.
    Фиксированное окно через Redis INCR + EXPIRE.
    """
    pipe = redis.pipeline()
    pipe.incr(key)
    pipe.expire(key, window_seconds)
    results = await pipe.execute()
    current_count = results[0]
    return current_count <= limit
