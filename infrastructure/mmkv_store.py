"""Memory-mapped access to MMKV store files.

Only the subset used by the transfer pipeline is supported: single-process
mode, no encryption, 32-bit integer values. A store file is a 4-byte
little-endian payload length followed by a protobuf-style stream: one varint
placeholder, then ``<varint len><key utf-8><varint len><value>`` records in
append order, where the last record for a key wins and an empty value
deletes it. Integer values are protobuf ``int32`` varints.

Writes are appended to the mapping. `close()` flushes the mapping and
refreshes the CRC-32 digest held in the ``.crc`` sidecar so the owning
process accepts the file on its next load.
"""

from __future__ import annotations

import mmap
import os
from pathlib import Path
import struct
import zlib

from loguru import logger

PAGE_SIZE = mmap.PAGESIZE
ITEM_SIZE_HOLDER = 0x00FFFFFF

_U32 = struct.Struct("<I")
_HEADER_SIZE = _U32.size

# Sidecar layout: crc, version, sequence, 16-byte vector, actual size,
# then the last confirmed (actual size, crc) pair.
_META_CRC_OFFSET = 0
_META_VERSION_OFFSET = 4
_META_ACTUAL_SIZE_OFFSET = 28
_META_LAST_CONFIRMED_OFFSET = 32
_META_MIN_SIZE = 40
_META_VERSION_ACTUAL_SIZE = 3


class MmkvFormatError(ValueError):
    """Raised when a store file's contents cannot be interpreted."""


def encode_varint(value: int) -> bytes:
    value &= (1 << 64) - 1
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def read_varint(buf: bytes | mmap.mmap, pos: int, end: int) -> tuple[int, int]:
    """Decode a varint at `pos`; return (value, next position)."""
    result = 0
    shift = 0
    while True:
        if pos >= end or shift >= 64:
            raise MmkvFormatError(f"truncated varint at offset {pos}")
        byte = buf[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7


def encode_int32(value: int) -> bytes:
    if value < -(2**31) or value >= 2**31:
        raise ValueError(f"value out of int32 range: {value}")
    return encode_varint(value)


def decode_int32(data: bytes) -> int:
    value, _ = read_varint(data, 0, len(data))
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value >= (1 << 31) else value


def _parse_items(buf: mmap.mmap, start: int, end: int) -> dict[str, bytes]:
    items: dict[str, bytes] = {}
    if end <= start:
        return items
    _, pos = read_varint(buf, start, end)
    while pos < end:
        key_len, pos = read_varint(buf, pos, end)
        if pos + key_len > end:
            raise MmkvFormatError(f"key overruns payload at offset {pos}")
        key = bytes(buf[pos : pos + key_len]).decode("utf-8", errors="replace")
        pos += key_len
        value_len, pos = read_varint(buf, pos, end)
        if pos + value_len > end:
            raise MmkvFormatError(f"value overruns payload at offset {pos}")
        value = bytes(buf[pos : pos + value_len])
        pos += value_len
        if not key:
            continue
        if value:
            items[key] = value
        else:
            items.pop(key, None)
    return items


class MmkvStore:
    """One opened store file rooted at a caller-supplied directory."""

    def __init__(self, root_dir: str | Path, store_id: str) -> None:
        self._path = Path(root_dir) / store_id
        self._crc_path = Path(root_dir) / f"{store_id}.crc"
        self._file = self._path.open("r+b")
        self._dirty = False
        self._closed = False
        try:
            size = os.fstat(self._file.fileno()).st_size
            if size < PAGE_SIZE:
                self._file.truncate(PAGE_SIZE)
                size = PAGE_SIZE
            self._mm = mmap.mmap(self._file.fileno(), size)
            (self._actual_size,) = _U32.unpack_from(self._mm, 0)
            if self._actual_size > size - _HEADER_SIZE:
                self._mm.close()
                raise MmkvFormatError(
                    f"{self._path}: payload size {self._actual_size} exceeds file size {size}"
                )
            end = _HEADER_SIZE + self._actual_size
            try:
                self._values = _parse_items(self._mm, _HEADER_SIZE, end)
            except MmkvFormatError:
                self._mm.close()
                raise
        except (OSError, MmkvFormatError):
            self._file.close()
            raise
        logger.debug(
            "Opened store {} ({} keys, {} payload bytes)",
            self._path,
            len(self._values),
            self._actual_size,
        )

    @property
    def path(self) -> Path:
        return self._path

    def __enter__(self) -> MmkvStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def encode(self, key: str, value: int) -> None:
        if self._closed:
            raise ValueError(f"store is closed: {self._path}")
        data = encode_int32(int(value))
        key_bytes = key.encode("utf-8")
        record = bytearray()
        if self._actual_size == 0:
            record += encode_varint(ITEM_SIZE_HOLDER)
        record += encode_varint(len(key_bytes)) + key_bytes
        record += encode_varint(len(data)) + data

        start = _HEADER_SIZE + self._actual_size
        self._ensure_capacity(start + len(record))
        self._mm[start : start + len(record)] = bytes(record)
        self._actual_size += len(record)
        _U32.pack_into(self._mm, 0, self._actual_size)
        self._values[key] = data
        self._dirty = True

    def decode_int(self, key: str, default: int = 0) -> int:
        data = self._values.get(key)
        if data is None:
            return default
        try:
            return decode_int32(data)
        except MmkvFormatError:
            logger.warning("Undecodable value for {} in {}", key, self._path)
            return default

    def keys(self) -> list[str]:
        return list(self._values)

    def close(self) -> None:
        """Flush the mapping to disk, refresh the sidecar and release the file."""
        if self._closed:
            return
        self._closed = True
        try:
            if self._dirty:
                self._mm.flush()
                crc = zlib.crc32(self._mm[_HEADER_SIZE : _HEADER_SIZE + self._actual_size])
                self._write_meta(crc)
            self._mm.close()
        finally:
            self._file.close()

    def _ensure_capacity(self, needed: int) -> None:
        size = len(self._mm)
        if needed <= size:
            return
        new_size = size
        while new_size < needed:
            new_size += max(PAGE_SIZE, new_size)
        self._mm.flush()
        self._mm.close()
        self._file.truncate(new_size)
        self._mm = mmap.mmap(self._file.fileno(), new_size)
        logger.debug("Grew store {} to {} bytes", self._path, new_size)

    def _write_meta(self, crc: int) -> None:
        if not self._crc_path.exists():
            logger.debug("No sidecar for {}; digest not recorded", self._path)
            return
        with self._crc_path.open("r+b") as f:
            head = f.read(_META_MIN_SIZE)
            f.seek(_META_CRC_OFFSET)
            f.write(_U32.pack(crc))
            if len(head) < _META_MIN_SIZE:
                return
            (version,) = _U32.unpack_from(head, _META_VERSION_OFFSET)
            if version >= _META_VERSION_ACTUAL_SIZE:
                f.seek(_META_ACTUAL_SIZE_OFFSET)
                f.write(_U32.pack(self._actual_size))
                f.seek(_META_LAST_CONFIRMED_OFFSET)
                f.write(_U32.pack(self._actual_size) + _U32.pack(crc))
        logger.debug("Sidecar digest for {} set to {:08x}", self._path, crc)


def open_mmkv_store(root_dir: str, store_id: str) -> MmkvStore:
    return MmkvStore(root_dir, store_id)
