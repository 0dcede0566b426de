"""
Key discovery.

Keys are looked up beside the image (``<game>.dkey``) or in a keys directory
holding files named after the game. A missing key is not an error: the
lookups return None and the caller falls back to asking for one.
"""

import os
import unicodedata
from pathlib import Path
from typing import Optional

from ps3dec.crypto import key_from_hex
from ps3dec.exceptions import InvalidEncoding
from ps3dec.exceptions import IoFailure
from ps3dec.exceptions import KeyFileNotFound
from ps3dec.utils import game_name_from_path
from ps3dec.utils import log

DEFAULT_KEYS_DIR = "keys"
DKEY_EXTENSION = ".dkey"


def clean_key_text(text: str) -> str:
    """Drop line breaks and other control characters some key files carry."""
    text = text.replace("\r", "").replace("\n", "")
    return "".join(c for c in text if unicodedata.category(c) != "Cc")


def _read_key(path: Path) -> str:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise IoFailure(f"Failed to read key file {path}: {e}") from e
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidEncoding(f"Key file {path} contains invalid UTF-8") from e

    key = clean_key_text(text)
    # Raises InvalidKeyFormat without echoing the key
    key_from_hex(key)
    return key


def read_key_file(path) -> str:
    """Load and validate a key file named explicitly by the user."""
    path = Path(path)
    if not path.is_file():
        raise KeyFileNotFound(f"Key file not found: {path}")
    return _read_key(path)


def dkey_path_for(iso_path) -> Path:
    path = Path(iso_path)
    return path.with_name(game_name_from_path(path)).with_suffix(DKEY_EXTENSION)


def detect_key_in_directory(iso_path) -> Optional[str]:
    """Return the key stored in the .dkey file next to the image, if any."""
    dkey_path = dkey_path_for(iso_path)
    if not dkey_path.is_file():
        log.warning(f"Key not found in game directory: {dkey_path.name}")
        return None

    key = _read_key(dkey_path)
    log.info(f"Found key file: {dkey_path}")
    return key


def detect_key(game_name: str, keys_dir=DEFAULT_KEYS_DIR) -> Optional[str]:
    """Search keys_dir for a file whose name contains game_name."""
    keys_dir = Path(keys_dir)
    try:
        entries = sorted(os.scandir(keys_dir), key=lambda e: e.name)
    except OSError as e:
        log.warning(f"Failed to read '{keys_dir}' directory: {e}")
        return None

    for entry in entries:
        if entry.is_file() and game_name in entry.name:
            log.info(f"Found key: {entry.path}")
            return _read_key(Path(entry.path))

    log.warning(f"Key for {game_name} not found in '{keys_dir}'")
    return None
