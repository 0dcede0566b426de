import os
import tempfile
import threading

from collections import deque
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from ps3dec.crypto import SECTOR_SIZE
from ps3dec.crypto import SectorCipher
from ps3dec.exceptions import IoFailure
from ps3dec.regions import extract_regions
from ps3dec.regions import locate
from ps3dec.regions import read_header
from ps3dec.utils import default_output_path
from ps3dec.utils import log


DECRYPT = "decrypt"
ENCRYPT = "encrypt"
OUTPUT_MODE = 0o644


class PS3Dec(object):
    """Decrypts or encrypts a whole disc image, sector by sector.

    Chunks of ``chunk_sectors`` sectors are handled by ``workers`` threads.
    Every chunk reads its own slice of the input and owns the matching
    slice of the output, so chunks never share a buffer.
    """

    modes = (DECRYPT, ENCRYPT)

    def __init__(self, iso_path, key, workers=1, chunk_sectors=256):
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        if chunk_sectors < 1:
            raise ValueError(f"chunk_sectors must be at least 1, got {chunk_sectors}")
        self.iso_path = iso_path
        self.cipher = SectorCipher(key)
        self.workers = workers
        self.chunk_sectors = chunk_sectors
        self._regions = None
        self._read_lock = threading.Lock()

    def regions(self):
        """Region map of the image, read from its header on first use."""
        if self._regions is None:
            try:
                with open(self.iso_path, "rb") as stream:
                    header = read_header(stream)
            except OSError as e:
                raise IoFailure(f"Failed to read header of {self.iso_path}: {e}") from e
            self._regions = extract_regions(header)
            for i, region in enumerate(self._regions):
                log.debug(
                    f"Region {i} from {region.first_sector:x} to {region.last_sector:x} "
                    f"is encrypted: {region.is_encrypted}"
                )
        return self._regions

    def decrypt(self, output_path=None):
        return self.run(DECRYPT, output_path)

    def encrypt(self, output_path=None):
        return self.run(ENCRYPT, output_path)

    def run(self, mode, output_path=None):
        """Write the transformed image to output_path.

        The image is built in a temporary file beside output_path and only
        moved into place once every sector succeeded.
        Returns the number of sectors passed through the cipher.
        """
        if mode not in self.modes:
            raise ValueError(f"Mode ({mode}) not supported. Use one of: {', '.join(self.modes)}")
        if output_path is None:
            output_path = default_output_path(self.iso_path, mode)
        output_path = Path(output_path)

        regions = self.regions()
        if self._is_input(output_path):
            raise ValueError("Output path must differ from the input image")

        encrypt = mode == ENCRYPT
        log.info(f"{mode.capitalize()}ing {self.iso_path} -> {output_path}")

        try:
            transformed, total_sectors = self._write_image(output_path, regions, encrypt)
        except OSError as e:
            raise IoFailure(f"Failed to {mode} {self.iso_path}: {e}") from e

        log.info(f"Done: {transformed} of {total_sectors} sectors {mode}ed")
        return transformed

    def _is_input(self, output_path):
        if os.path.abspath(output_path) == os.path.abspath(self.iso_path):
            return True
        try:
            return output_path.exists() and os.path.samefile(output_path, self.iso_path)
        except OSError as e:
            raise IoFailure(f"Failed to compare {output_path} with {self.iso_path}: {e}") from e

    def _write_image(self, output_path, regions, encrypt):
        with open(self.iso_path, "rb") as src:
            size = src.seek(0, os.SEEK_END)
            total_sectors = (size + SECTOR_SIZE - 1) // SECTOR_SIZE
            dst = tempfile.NamedTemporaryFile(
                dir=output_path.parent,
                prefix=f".{output_path.name}.",
                suffix=".part",
                delete=False,
            )
            try:
                with dst:
                    transformed = self._copy(src, dst, regions, total_sectors, encrypt)
                os.chmod(dst.name, OUTPUT_MODE)
                os.replace(dst.name, output_path)
            except BaseException:
                os.unlink(dst.name)
                raise
        return transformed, total_sectors

    def _copy(self, src, dst, regions, total_sectors, encrypt):
        transformed = 0
        pending = deque()
        max_pending = self.workers * 2

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            try:
                for first in range(0, total_sectors, self.chunk_sectors):
                    count = min(self.chunk_sectors, total_sectors - first)
                    pending.append(
                        executor.submit(self._process_chunk, src, regions, first, count, encrypt)
                    )
                    if len(pending) >= max_pending:
                        transformed += self._write_chunk(dst, pending.popleft().result())
                while pending:
                    transformed += self._write_chunk(dst, pending.popleft().result())
            except BaseException:
                # Stop the run; chunks not yet started are dropped
                for future in pending:
                    future.cancel()
                raise

        return transformed

    def _process_chunk(self, src, regions, first, count, encrypt):
        with self._read_lock:
            src.seek(first * SECTOR_SIZE)
            data = bytearray(src.read(count * SECTOR_SIZE))

        transformed = 0
        with memoryview(data) as view:
            for offset in range(0, len(data), SECTOR_SIZE):
                sector = first + offset // SECTOR_SIZE
                if locate(regions, sector):
                    self.cipher.transform(sector, view[offset:offset + SECTOR_SIZE], encrypt)
                    transformed += 1
        return first, data, transformed

    def _write_chunk(self, dst, result):
        first, data, transformed = result
        dst.seek(first * SECTOR_SIZE)
        dst.write(data)
        return transformed
