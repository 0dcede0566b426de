import os

import pytest

from ps3dec.api import PS3Dec
from ps3dec.crypto import SECTOR_SIZE
from ps3dec.crypto import encrypt_sector
from ps3dec.crypto import key_from_hex
from ps3dec.exceptions import IoFailure
from ps3dec.exceptions import InvalidBlockAlignment
from ps3dec.exceptions import MalformedHeader
from ps3dec.exceptions import SectorOutOfRange
from ps3dec.regions import HEADER_SIZE
from ps3dec.regions import Region

SECTORS = 30
ENCRYPTED = range(10, 20)


def sector(data, index):
    return bytes(data[index * SECTOR_SIZE:(index + 1) * SECTOR_SIZE])


def leftovers(directory):
    return sorted(p.name for p in directory.iterdir() if p.name.endswith(".part"))


@pytest.fixture
def plain_image(tmp_path, header):
    data = bytearray(os.urandom(SECTORS * SECTOR_SIZE))
    data[:HEADER_SIZE] = header
    path = tmp_path / "Game_decrypted.iso"
    path.write_bytes(data)
    return path


def test_regions_are_read_once(plain_image, key):
    dec = PS3Dec(plain_image, key)
    regions = dec.regions()
    assert regions == [Region(0, 9, False), Region(10, 19, True), Region(20, 29, False)]
    assert dec.regions() is regions


def test_encrypt_only_touches_encrypted_regions(plain_image, key, tmp_path):
    out = tmp_path / "Game.iso"
    transformed = PS3Dec(plain_image, key).encrypt(out)

    assert transformed == len(ENCRYPTED)
    plain = plain_image.read_bytes()
    encrypted = out.read_bytes()
    assert len(encrypted) == len(plain)

    raw_key = key_from_hex(key)
    for i in range(SECTORS):
        if i in ENCRYPTED:
            expected = bytearray(sector(plain, i))
            encrypt_sector(raw_key, i, expected)
            assert sector(encrypted, i) == expected
        else:
            assert sector(encrypted, i) == sector(plain, i)


def test_round_trip(plain_image, key, tmp_path):
    encrypted = tmp_path / "Game.iso"
    decrypted = tmp_path / "Game_again.iso"

    PS3Dec(plain_image, key).encrypt(encrypted)
    PS3Dec(encrypted, key).decrypt(decrypted)

    assert decrypted.read_bytes() == plain_image.read_bytes()


@pytest.mark.parametrize("workers, chunk_sectors", [(1, 1), (2, 3), (4, 7), (8, 64)])
def test_parallel_output_matches_sequential(plain_image, key, tmp_path, workers, chunk_sectors):
    sequential = tmp_path / "sequential.iso"
    parallel = tmp_path / "parallel.iso"

    PS3Dec(plain_image, key).encrypt(sequential)
    transformed = PS3Dec(plain_image, key, workers=workers, chunk_sectors=chunk_sectors).encrypt(parallel)

    assert transformed == len(ENCRYPTED)
    assert parallel.read_bytes() == sequential.read_bytes()


def test_default_output_path(plain_image, key):
    PS3Dec(plain_image, key).encrypt()
    assert (plain_image.parent / "Game_encrypted.iso").is_file()


def test_output_must_differ_from_input(plain_image, key):
    with pytest.raises(ValueError):
        PS3Dec(plain_image, key).decrypt(plain_image)


def test_unknown_mode(plain_image, key, tmp_path):
    with pytest.raises(ValueError):
        PS3Dec(plain_image, key).run("scramble", tmp_path / "out.iso")


def test_invalid_settings(plain_image, key):
    with pytest.raises(ValueError):
        PS3Dec(plain_image, key, workers=0)
    with pytest.raises(ValueError):
        PS3Dec(plain_image, key, chunk_sectors=0)


def test_sector_past_last_region(plain_image, key, tmp_path):
    with open(plain_image, "ab") as f:
        f.write(bytes(10 * SECTOR_SIZE))
    out = tmp_path / "out.iso"
    with pytest.raises(SectorOutOfRange):
        PS3Dec(plain_image, key, chunk_sectors=4).decrypt(out)
    assert not out.exists()
    assert leftovers(tmp_path) == []


def test_trailing_partial_sector_in_plain_region(make_header, tmp_path, key):
    path = tmp_path / "Game.iso"
    data = bytearray(os.urandom(30 * SECTOR_SIZE + 100))
    data[:HEADER_SIZE] = make_header([0, 9, 20, 30])
    path.write_bytes(data)

    out = tmp_path / "out.iso"
    PS3Dec(path, key).decrypt(out)
    assert out.read_bytes()[-100:] == bytes(data[-100:])


def test_trailing_misaligned_sector_in_encrypted_region(make_header, tmp_path, key):
    path = tmp_path / "Game.iso"
    data = bytearray(os.urandom(20 * SECTOR_SIZE + 100))
    data[:HEADER_SIZE] = make_header([0, 9, 30, 39])
    path.write_bytes(data)

    out = tmp_path / "out.iso"
    with pytest.raises(InvalidBlockAlignment):
        PS3Dec(path, key, chunk_sectors=4).decrypt(out)
    assert not out.exists()
    assert leftovers(tmp_path) == []


def test_truncated_image(make_header, tmp_path, key):
    path = tmp_path / "Game.iso"
    path.write_bytes(make_header([0, 9])[:1000])
    with pytest.raises(MalformedHeader):
        PS3Dec(path, key).decrypt(tmp_path / "out.iso")


def test_missing_image(tmp_path, key):
    with pytest.raises(IoFailure):
        PS3Dec(tmp_path / "missing.iso", key).decrypt(tmp_path / "out.iso")


def test_unwritable_output(plain_image, key, tmp_path):
    with pytest.raises(IoFailure):
        PS3Dec(plain_image, key).decrypt(tmp_path / "no" / "such" / "dir.iso")


def test_failed_run_keeps_previous_output(plain_image, key, tmp_path):
    out = tmp_path / "out.iso"
    PS3Dec(plain_image, key).decrypt(out)
    previous = out.read_bytes()

    with open(plain_image, "ab") as f:
        f.write(bytes(SECTOR_SIZE))
    with pytest.raises(SectorOutOfRange):
        PS3Dec(plain_image, key).decrypt(out)

    assert out.read_bytes() == previous
    assert leftovers(tmp_path) == []


def test_successful_run_leaves_no_temporary_file(plain_image, key, tmp_path):
    out = tmp_path / "out.iso"
    PS3Dec(plain_image, key).decrypt(out)
    assert out.is_file()
    assert leftovers(tmp_path) == []


def test_output_symlink_to_input(plain_image, key, tmp_path):
    original = plain_image.read_bytes()
    link = tmp_path / "link.iso"
    link.symlink_to(plain_image)

    with pytest.raises(ValueError):
        PS3Dec(plain_image, key).decrypt(link)

    assert plain_image.read_bytes() == original
    assert link.is_symlink()


def test_output_hard_link_to_input(plain_image, key, tmp_path):
    original = plain_image.read_bytes()
    link = tmp_path / "hard.iso"
    os.link(plain_image, link)

    with pytest.raises(ValueError):
        PS3Dec(plain_image, key).encrypt(link)

    assert plain_image.read_bytes() == original
