"""
Region map of a disc image.

The first 4096 bytes of an image describe which sector runs are stored in
plaintext and which are encrypted. All fields are big-endian:

    [0:4]   number of plaintext regions N
    [8:..]  2*N 32-bit sector boundaries

Region i spans boundary words i and i+1. Regions alternate plaintext and
encrypted, starting with plaintext, so there are 2*N - 1 of them. A plaintext
region owns its boundary sectors; the encrypted region between two of them
starts one sector after and ends one sector before the recorded words.
"""

import struct
from bisect import bisect_right
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ps3dec.exceptions import MalformedHeader
from ps3dec.exceptions import SectorOutOfRange

HEADER_SIZE = 4096
REGION_TABLE_OFFSET = 8
MAX_REGION_COUNT = (HEADER_SIZE - REGION_TABLE_OFFSET) // 4 - 1


@dataclass(frozen=True)
class Region:
    """A contiguous run of sectors sharing one encryption state."""

    first_sector: int
    last_sector: int
    is_encrypted: bool

    def __contains__(self, sector):
        return self.first_sector <= sector <= self.last_sector

    @property
    def sector_count(self):
        return self.last_sector - self.first_sector + 1


def read_header(stream, lock=None) -> bytes:
    """Read the header from the start of a binary stream.

    When a lock is given it is held for the whole seek and read, so the
    stream may be shared with other readers.
    """
    if lock is None:
        stream.seek(0)
        return stream.read(HEADER_SIZE)
    with lock:
        stream.seek(0)
        return stream.read(HEADER_SIZE)


def extract_regions(header: bytes) -> List[Region]:
    """Parse a disc header into its ordered list of regions."""
    if len(header) < HEADER_SIZE:
        raise MalformedHeader(f"header is {len(header)} bytes, expected {HEADER_SIZE}")

    normal_regions = struct.unpack_from(">I", header, 0)[0]
    if normal_regions == 0:
        raise MalformedHeader("header declares no plaintext regions")

    regions_count = normal_regions * 2 - 1
    if regions_count > MAX_REGION_COUNT:
        raise MalformedHeader(
            f"header declares {normal_regions} plaintext regions, "
            f"which does not fit in {HEADER_SIZE} bytes"
        )

    regions = []
    is_encrypted = False
    for i in range(regions_count):
        start, end = struct.unpack_from(">II", header, REGION_TABLE_OFFSET + 4 * i)
        if is_encrypted:
            start += 1
            end -= 1

        # Neighbours share boundary words, so non-empty regions are contiguous
        if start > end:
            raise MalformedHeader(f"region {i} ends before it starts ({start:#x} > {end:#x})")

        regions.append(Region(start, end, is_encrypted))
        is_encrypted = not is_encrypted

    return regions


def find_region(regions: Sequence[Region], sector: int) -> Optional[Region]:
    """Binary search for the region holding sector; regions must be sorted."""
    index = bisect_right(regions, sector, key=lambda r: r.first_sector) - 1
    if index >= 0 and sector in regions[index]:
        return regions[index]
    return None


def locate(regions: Sequence[Region], sector: int) -> bool:
    """Return whether sector lies in an encrypted region."""
    region = find_region(regions, sector)
    if region is None:
        raise SectorOutOfRange(f"sector {sector} is not in any region")
    return region.is_encrypted

