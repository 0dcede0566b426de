import struct

import pytest

from ps3dec.regions import HEADER_SIZE


TEST_KEY = "0123456789ABCDEF0123456789ABCDEF"


def _build_header(boundaries, normal_regions=None):
    """Header with the given sector boundary words after the region count."""
    if normal_regions is None:
        normal_regions = len(boundaries) // 2
    header = bytearray(HEADER_SIZE)
    struct.pack_into(">I", header, 0, normal_regions)
    struct.pack_into(f">{len(boundaries)}I", header, 8, *boundaries)
    return bytes(header)


@pytest.fixture
def make_header():
    return _build_header


@pytest.fixture
def key():
    return TEST_KEY


@pytest.fixture
def header():
    # plaintext [0, 9], encrypted [10, 19], plaintext [20, 29]
    return _build_header([0, 9, 20, 29])
