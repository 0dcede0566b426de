"""
Command line entry point.

    ps3dec decrypt Game.iso
    ps3dec encrypt Game_decrypted.iso --key-file Game.dkey -j 4

Without --key or --key-file the key is looked for beside the image, then in
the keys directory, and finally asked for interactively.
"""

import argparse
import getpass
import logging
import os
import sys
from pathlib import Path

from ps3dec.api import PS3Dec
from ps3dec.autodetect import DEFAULT_KEYS_DIR
from ps3dec.autodetect import detect_key
from ps3dec.autodetect import detect_key_in_directory
from ps3dec.autodetect import read_key_file
from ps3dec.crypto import key_from_hex
from ps3dec.exceptions import KeyNotFound
from ps3dec.exceptions import PS3DecError
from ps3dec.utils import game_name_from_path
from ps3dec.utils import log

KEYS_DIR_ENV = "PS3DEC_KEYS_DIR"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="ps3dec",
        description="Decrypt or encrypt region-partitioned AES-128-CBC disc images.",
    )
    parser.add_argument("mode", choices=PS3Dec.modes, help="Operation to perform.")
    parser.add_argument("image", type=Path, help="Disc image to read.")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Output image (default: <game>_decrypted/_encrypted beside the input).",
    )
    key_group = parser.add_mutually_exclusive_group()
    key_group.add_argument("-k", "--key", help="Key as 32 hexadecimal digits.")
    key_group.add_argument("--key-file", type=Path, help="File holding the key as hex text.")
    parser.add_argument(
        "--keys-dir",
        type=Path,
        default=Path(os.environ.get(KEYS_DIR_ENV, DEFAULT_KEYS_DIR)),
        help=f"Directory searched for key files named after the game (env: {KEYS_DIR_ENV}).",
    )
    parser.add_argument(
        "-j",
        "--workers",
        type=int,
        default=1,
        help="Number of worker threads transforming sectors.",
    )
    parser.add_argument(
        "--no-prompt",
        action="store_true",
        help="Fail instead of asking for a key when none is found.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging.")
    args = parser.parse_args(argv)
    if args.workers < 1:
        parser.error("--workers must be at least 1")
    return args


def prompt_for_key():
    """Ask for the key until a valid one is entered; empty input gives up."""
    while True:
        key = getpass.getpass("Enter the disc key (32 hex digits): ")
        if not key.strip():
            raise KeyNotFound("No key entered")
        try:
            key_from_hex(key)
        except PS3DecError as e:
            log.error(str(e))
            continue
        return key


def resolve_key(args):
    if args.key is not None:
        key_from_hex(args.key)
        return args.key
    if args.key_file is not None:
        return read_key_file(args.key_file)

    key = detect_key_in_directory(args.image)
    if key is None:
        game_name = Path(game_name_from_path(args.image)).stem
        key = detect_key(game_name, args.keys_dir)
    if key is not None:
        return key

    if args.no_prompt:
        raise KeyNotFound(f"No key found for {args.image}")
    return prompt_for_key()


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        key = resolve_key(args)
        PS3Dec(args.image, key, workers=args.workers).run(args.mode, args.output)
    except (PS3DecError, ValueError) as e:
        log.error(f"{type(e).__name__}: {e}")
        return 1
    except KeyboardInterrupt:
        log.error("Interrupted")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
