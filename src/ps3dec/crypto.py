"""
Sector cipher for region-partitioned disc images.

Encrypted sectors are AES-128-CBC. Chaining restarts at every sector: the IV
is derived from the absolute sector index only, so any sector can be
transformed on its own.
"""

import string
import struct
from typing import Union

from Crypto.Cipher import AES

from ps3dec.exceptions import InvalidBlockAlignment
from ps3dec.exceptions import InvalidKeyFormat

# Constants for sector-based image decryption
SECTOR_SIZE = 2048
BLOCK_SIZE = AES.block_size
KEY_SIZE = 16
KEY_HEX_LENGTH = KEY_SIZE * 2

HEX_DIGITS = frozenset(string.hexdigits)
# str.isspace also treats the ASCII separators 0x1c-0x1f as whitespace
SEPARATORS = frozenset("\x1c\x1d\x1e\x1f")

SectorBuffer = Union[bytearray, memoryview]


# Key validation

def strip_key(raw_key: str) -> str:
    """Remove every whitespace character from key text."""
    return "".join(c for c in raw_key if not c.isspace() or c in SEPARATORS)


def validate_key(raw_key: str) -> bool:
    """Return True if raw_key holds exactly 32 hex digits, whitespace ignored."""
    stripped = strip_key(raw_key)
    if len(stripped) != KEY_HEX_LENGTH:
        return False
    return all(c in HEX_DIGITS for c in stripped)


def key_from_hex(raw_key: str) -> bytes:
    """Convert validated key text to the 16 raw AES key bytes.

    The error message describes what is wrong with the key but never
    repeats it.
    """
    stripped = strip_key(raw_key)
    if len(stripped) != KEY_HEX_LENGTH:
        raise InvalidKeyFormat(
            f"Invalid key length: {len(stripped)} (expected {KEY_HEX_LENGTH} hex digits)"
        )
    if not all(c in HEX_DIGITS for c in stripped):
        raise InvalidKeyFormat("Key contains invalid characters")
    return bytes.fromhex(stripped)


# Helper functions

def generate_iv(sector: int) -> bytes:
    """Build the IV for a sector: twelve zero bytes then the sector index
    as a big-endian 32-bit value. Indices above 2**32 wrap."""
    iv = bytearray(BLOCK_SIZE)
    struct.pack_into(">I", iv, 12, sector & 0xFFFFFFFF)
    return bytes(iv)


def check_key(key: bytes):
    if len(key) != KEY_SIZE:
        raise InvalidKeyFormat(f"Invalid key length: {len(key)} bytes (expected {KEY_SIZE})")


def check_alignment(buffer: SectorBuffer):
    if len(buffer) % BLOCK_SIZE != 0:
        raise InvalidBlockAlignment(
            f"sector buffer length {len(buffer)} is not a multiple of {BLOCK_SIZE}"
        )


def _new_cipher(key: bytes, sector_index: int):
    return AES.new(key, AES.MODE_CBC, iv=generate_iv(sector_index))


# Main crypto functions

def decrypt_sector(key: bytes, sector_index: int, buffer: SectorBuffer) -> None:
    """Decrypt one sector in place.

    The buffer must be writable and a whole number of 16-byte blocks; a
    misaligned buffer is rejected before anything is written.
    """
    check_key(key)
    check_alignment(buffer)
    if not buffer:
        return
    cipher = _new_cipher(key, sector_index)
    buffer[:] = cipher.decrypt(bytes(buffer))


def encrypt_sector(key: bytes, sector_index: int, buffer: SectorBuffer) -> None:
    """Encrypt one sector in place. Inverse of decrypt_sector."""
    check_key(key)
    check_alignment(buffer)
    if not buffer:
        return
    cipher = _new_cipher(key, sector_index)
    buffer[:] = cipher.encrypt(bytes(buffer))


class SectorCipher:
    """Key material for transforming sectors of one image.

    Holds no chaining state between calls, so a single instance may be
    shared by worker threads.
    """

    def __init__(self, key: Union[str, bytes]):
        if isinstance(key, str):
            key = key_from_hex(key)
        check_key(key)
        self._key = bytes(key)

    def __repr__(self):
        return f"{type(self).__name__}(key=<hidden>)"

    def decrypt(self, sector_index: int, buffer: SectorBuffer) -> None:
        decrypt_sector(self._key, sector_index, buffer)

    def encrypt(self, sector_index: int, buffer: SectorBuffer) -> None:
        encrypt_sector(self._key, sector_index, buffer)

    def transform(self, sector_index: int, buffer: SectorBuffer, encrypt: bool) -> None:
        if encrypt:
            self.encrypt(sector_index, buffer)
        else:
            self.decrypt(sector_index, buffer)
