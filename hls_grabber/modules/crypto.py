"""
AES-128-CBC with PKCS#5 padding, the only cipher HLS segments are encrypted with (METHOD=AES-128).
"""

from Crypto.Cipher import AES
from Crypto.Util.Padding import pad

from .errors import CryptoError

BLOCK_SIZE = AES.block_size  # 16
KEY_SIZE = 16


def _check(key: bytes, iv: bytes):
    if len(key) != KEY_SIZE:
        raise CryptoError(f"Key length must be {KEY_SIZE} bytes for AES-128, got {len(key)}")

    if len(iv) != BLOCK_SIZE:
        raise CryptoError(f"IV length must equal the block size ({BLOCK_SIZE}), got {len(iv)}")


def pkcs5_pad(data: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    return pad(data, block_size)


def pkcs5_unpad(data: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    # Only the last byte is checked, unlike Crypto.Util.Padding.unpad
    if not data:
        raise CryptoError("Invalid padding size")

    padding = data[-1]
    if padding == 0 or padding > len(data) or padding > block_size:
        raise CryptoError(f"Invalid padding: {padding}")

    return data[:-padding]


def encrypt(data: bytes, key: bytes, iv: bytes) -> bytes:
    _check(key, iv)
    cipher = AES.new(key, AES.MODE_CBC, iv=iv)
    return cipher.encrypt(pkcs5_pad(data))


def decrypt(data: bytes, key: bytes, iv: bytes) -> bytes:
    _check(key, iv)
    if len(data) % BLOCK_SIZE != 0:
        raise CryptoError(f"Ciphertext length {len(data)} is not a multiple of the block size")

    cipher = AES.new(key, AES.MODE_CBC, iv=iv)
    return pkcs5_unpad(cipher.decrypt(data))
