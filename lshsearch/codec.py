"""
Binary encoding for saved indexes.

Index files are a flat sequence of native C ``unsigned`` integers and native
32-bit floats, with no magic number and no version field. Field order is
fixed by the hash scheme that wrote the file, so the reader here is strictly
sequential and checks every length against the bytes that are left before
trusting it.
"""

from typing import Iterable

import numpy as np

from lshsearch.exceptions import IndexFormatError

UINT = np.dtype(np.uintc)
FLOAT = np.dtype(np.float32)

UINT_MAX = int(np.iinfo(UINT).max)


class BinaryWriter:
    """Accumulates the bytes of an index file in memory."""

    def __init__(self) -> None:
        self._chunks: list[bytes] = []
        self._size = 0

    def _append(self, data: bytes) -> None:
        self._chunks.append(data)
        self._size += len(data)

    def write_uint(self, value: int) -> None:
        if not 0 <= value <= UINT_MAX:
            raise ValueError(f"Value {value} does not fit in an unsigned int")
        self._append(np.array([value], dtype=UINT).tobytes())

    def write_uints(self, values: Iterable[int]) -> None:
        self._append(np.asarray(values, dtype=UINT).tobytes())

    def write_floats(self, values: np.ndarray) -> None:
        self._append(np.ascontiguousarray(values, dtype=FLOAT).tobytes())

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)

    def __len__(self) -> int:
        return self._size


class BinaryReader:
    """
    Sequential, bounds-checked reader over the bytes of an index file.

    Every read names the field it is reading so that a truncated or corrupt
    file produces an error message pointing at the first bad field.
    """

    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._offset = 0

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def _take(self, dtype: np.dtype, count: int, field: str) -> np.ndarray:
        nbytes = count * dtype.itemsize
        if count < 0 or nbytes > self.remaining:
            raise IndexFormatError(
                f"Truncated index: {field} needs {nbytes} bytes at offset "
                f"{self._offset}, only {self.remaining} left"
            )
        array = np.frombuffer(self._data, dtype=dtype, count=count, offset=self._offset)
        self._offset += nbytes
        # Copy out so the result does not pin the file buffer.
        return array.copy()

    def read_uint(self, field: str) -> int:
        return int(self._take(UINT, 1, field)[0])

    def read_uints(self, count: int, field: str) -> np.ndarray:
        return self._take(UINT, count, field)

    def read_floats(self, count: int, field: str) -> np.ndarray:
        return self._take(FLOAT, count, field)

    def expect_end(self) -> None:
        if self.remaining:
            raise IndexFormatError(
                f"Unexpected {self.remaining} trailing bytes at offset {self._offset}"
            )


def write_buckets(writer: BinaryWriter, table: dict[int, list[int]]) -> None:
    """
    Write one bucket table: the bucket count, then for every bucket in
    ascending id order its id, its length and its keys.
    """
    writer.write_uint(len(table))
    for bucket_id in sorted(table):
        keys = table[bucket_id]
        writer.write_uint(bucket_id)
        writer.write_uint(len(keys))
        writer.write_uints(keys)


def read_buckets(reader: BinaryReader, n_buckets: int, table_id: int) -> dict[int, list[int]]:
    """
    Read one bucket table written by write_buckets.

    Args:
        reader: Reader positioned at the bucket count.
        n_buckets: The table size M; every stored id must be below it.
        table_id: Table number, used in error messages.

    Returns:
        Mapping from bucket id to the list of keys in insertion order.

    Raises:
        IndexFormatError: If counts are inconsistent with M or with the
            remaining bytes, or a bucket id is out of range or repeated.
    """
    count = reader.read_uint(f"table {table_id} bucket count")
    if count > n_buckets:
        raise IndexFormatError(
            f"Table {table_id} claims {count} buckets but the table size is {n_buckets}"
        )
    # Every bucket carries at least an id and a length.
    if count * 2 * UINT.itemsize > reader.remaining:
        raise IndexFormatError(
            f"Table {table_id} claims {count} buckets but only "
            f"{reader.remaining} bytes are left"
        )

    table: dict[int, list[int]] = {}
    for _ in range(count):
        bucket_id = reader.read_uint(f"table {table_id} bucket id")
        if bucket_id >= n_buckets:
            raise IndexFormatError(
                f"Table {table_id} bucket id {bucket_id} is not below {n_buckets}"
            )
        if bucket_id in table:
            raise IndexFormatError(f"Table {table_id} repeats bucket id {bucket_id}")
        length = reader.read_uint(f"table {table_id} bucket {bucket_id} length")
        keys = reader.read_uints(length, f"table {table_id} bucket {bucket_id} keys")
        table[bucket_id] = keys.tolist()
    return table
