import logging

from pathlib import Path


log = logging.getLogger("ps3dec")

GAME_NAME_SUFFIXES = ("_decrypted", "_encrypted")


def game_name_from_path(iso_path):
    """File name of the image with the _decrypted/_encrypted markers removed."""
    name = Path(iso_path).name
    for suffix in GAME_NAME_SUFFIXES:
        name = name.replace(suffix, "")
    return name


def default_output_path(iso_path, mode):
    """Output file beside the input, e.g. ``Game.iso`` -> ``Game_decrypted.iso``."""
    path = Path(iso_path)
    name = Path(game_name_from_path(path))
    return path.with_name(f"{name.stem}_{mode}ed{name.suffix}")