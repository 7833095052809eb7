"""
ShieldLedger Write-Ahead Log

Append-only, hash-chained commit log backing the ledger store. One record per
committed transaction; the payload is the canonical JSON changeset.

WAL GUARANTEES:
1. Append-only: records are never rewritten or reordered
2. Crash-safe: fsync after each record unless fsync_policy="manual"
3. Replay-deterministic: folding the records rebuilds the exact ledger state
4. Hash-chained: prev_hash[n] = SHA256(record[n-1])
5. Torn tail tolerant: a partial last record is dropped on open

FILE FORMAT:
    [HEADER: 48 bytes]
    [RECORD_0] ... [RECORD_N]

HEADER FORMAT (48 bytes):
    magic:      8 bytes   "SLWAL\\x00\\x01\\x00"
    version:    2 bytes   uint16 LE
    ledger_id: 32 bytes   UTF-8, NUL padded
    reserved:   2 bytes   0x0000
    header_crc: 4 bytes   CRC32 of preceding 44 bytes

RECORD FORMAT (variable):
    record_len:    4 bytes   uint32 LE, whole record including this field
    sequence:      8 bytes   uint64 LE, 0-indexed and contiguous
    prev_hash:    32 bytes   SHA-256 of previous record (zeros for the first)
    payload_hash: 32 bytes   SHA-256 of payload
    payload:       N bytes   canonical JSON changeset
    record_crc:    4 bytes   CRC32 of everything before it
"""

import hashlib
import os
import struct
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Tuple, Union


WAL_MAGIC = b"SLWAL\x00\x01\x00"
WAL_VERSION = 1
HEADER_SIZE = 48
RECORD_OVERHEAD = 4 + 8 + 32 + 32 + 4
MAX_RECORD_SIZE = 16 * 1024 * 1024
NULL_HASH_BYTES = b'\x00' * 32

FSYNC_PER_RECORD = "per_record"
FSYNC_MANUAL = "manual"


def compute_crc32(data: bytes) -> int:
    return zlib.crc32(data) & 0xFFFFFFFF


class WALError(Exception):
    """Base WAL exception."""
    pass


class WALCorruptionError(WALError):
    """WAL file or record is corrupted."""
    pass


class WALHeaderError(WALError):
    """WAL header validation failed."""
    pass


class WALChainError(WALError):
    """Hash chain validation failed."""
    pass


class WALSequenceError(WALError):
    """Sequence number validation failed."""
    pass


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class WALHeader:
    version: int
    ledger_id: str
    header_crc: int

    @staticmethod
    def _pack_without_crc(ledger_id: str) -> bytes:
        return (
            WAL_MAGIC +
            struct.pack('<H', WAL_VERSION) +
            ledger_id.encode('utf-8')[:32].ljust(32, b'\x00') +
            struct.pack('<H', 0)
        )

    @staticmethod
    def create(ledger_id: str) -> 'WALHeader':
        # Truncate on a character boundary that fits 32 bytes
        encoded = ledger_id.encode('utf-8')[:32]
        ledger_id = encoded.decode('utf-8', errors='ignore')
        crc = compute_crc32(WALHeader._pack_without_crc(ledger_id))
        return WALHeader(version=WAL_VERSION, ledger_id=ledger_id, header_crc=crc)

    def to_bytes(self) -> bytes:
        return self._pack_without_crc(self.ledger_id) + struct.pack('<I', self.header_crc)

    @staticmethod
    def from_bytes(data: bytes) -> 'WALHeader':
        if len(data) != HEADER_SIZE:
            raise WALHeaderError(f"Header size mismatch: expected {HEADER_SIZE}, got {len(data)}")

        if data[0:8] != WAL_MAGIC:
            raise WALHeaderError(f"Invalid magic: {data[0:8]!r}")

        version = struct.unpack('<H', data[8:10])[0]
        if version != WAL_VERSION:
            raise WALHeaderError(f"Unsupported WAL version: {version}")

        header_crc = struct.unpack('<I', data[44:48])[0]
        computed_crc = compute_crc32(data[0:44])
        if computed_crc != header_crc:
            raise WALHeaderError(
                f"Header CRC mismatch: stored={header_crc:08x}, computed={computed_crc:08x}"
            )

        try:
            ledger_id = data[10:42].rstrip(b'\x00').decode('utf-8')
        except UnicodeDecodeError as e:
            raise WALHeaderError(f"Header contains invalid UTF-8: {e}")

        return WALHeader(version=version, ledger_id=ledger_id, header_crc=header_crc)


@dataclass(frozen=True)
class WALRecord:
    sequence: int
    prev_hash: bytes
    payload_hash: bytes
    payload: bytes
    record_crc: int

    @property
    def record_len(self) -> int:
        return RECORD_OVERHEAD + len(self.payload)

    def _body(self) -> bytes:
        return (
            struct.pack('<I', self.record_len) +
            struct.pack('<Q', self.sequence) +
            self.prev_hash +
            self.payload_hash +
            self.payload
        )

    def to_bytes(self) -> bytes:
        return self._body() + struct.pack('<I', self.record_crc)

    def compute_record_hash(self) -> bytes:
        """SHA-256 over the full serialized record, used as the next prev_hash."""
        return hashlib.sha256(self.to_bytes()).digest()

    @staticmethod
    def create(sequence: int, payload: bytes, prev_hash: bytes) -> 'WALRecord':
        payload_hash = hashlib.sha256(payload).digest()
        body = (
            struct.pack('<I', RECORD_OVERHEAD + len(payload)) +
            struct.pack('<Q', sequence) +
            prev_hash +
            payload_hash +
            payload
        )
        return WALRecord(
            sequence=sequence,
            prev_hash=prev_hash,
            payload_hash=payload_hash,
            payload=payload,
            record_crc=compute_crc32(body),
        )

    @staticmethod
    def from_bytes(data: bytes, expected_sequence: Optional[int] = None) -> 'WALRecord':
        """
        Deserialize record from bytes.

        Validates length, CRC, sequence (when expected_sequence is given)
        and the payload hash.
        """
        if len(data) < RECORD_OVERHEAD:
            raise WALCorruptionError(f"Record too small: {len(data)} < {RECORD_OVERHEAD}")

        record_len = struct.unpack('<I', data[0:4])[0]
        if record_len != len(data):
            raise WALCorruptionError(
                f"Record length mismatch: header says {record_len}, got {len(data)}"
            )

        sequence = struct.unpack('<Q', data[4:12])[0]
        prev_hash = data[12:44]
        payload_hash = data[44:76]
        payload = data[76:-4]
        stored_crc = struct.unpack('<I', data[-4:])[0]

        computed_crc = compute_crc32(data[:-4])
        if computed_crc != stored_crc:
            raise WALCorruptionError(
                f"Record CRC mismatch at seq {sequence}: "
                f"stored={stored_crc:08x}, computed={computed_crc:08x}"
            )

        if expected_sequence is not None and sequence != expected_sequence:
            raise WALSequenceError(
                f"Sequence mismatch: expected {expected_sequence}, got {sequence}"
            )

        if hashlib.sha256(payload).digest() != payload_hash:
            raise WALCorruptionError(f"Payload hash mismatch at seq {sequence}")

        return WALRecord(
            sequence=sequence,
            prev_hash=prev_hash,
            payload_hash=payload_hash,
            payload=payload,
            record_crc=stored_crc,
        )


# =============================================================================
# WAL WRITER
# =============================================================================

class WALWriter:
    """
    Append-only WAL writer.

    Usage:
        with WALWriter.open_or_create(path, "shieldly") as writer:
            writer.append(payload)
    """

    def __init__(
        self,
        file: BinaryIO,
        header: WALHeader,
        next_sequence: int,
        prev_hash: bytes,
        fsync_policy: str = FSYNC_PER_RECORD,
    ):
        if fsync_policy not in (FSYNC_PER_RECORD, FSYNC_MANUAL):
            raise ValueError(f"Unknown fsync policy: {fsync_policy}")
        self._file = file
        self._header = header
        self._next_sequence = next_sequence
        self._prev_hash = prev_hash
        self._fsync_policy = fsync_policy
        self._closed = False

    @property
    def header(self) -> WALHeader:
        return self._header

    @property
    def next_sequence(self) -> int:
        return self._next_sequence

    @property
    def prev_hash(self) -> bytes:
        return self._prev_hash

    @staticmethod
    def create(
        path: Union[str, Path],
        ledger_id: str,
        fsync_policy: str = FSYNC_PER_RECORD,
    ) -> 'WALWriter':
        """
        Create a new WAL file.

        Raises:
            FileExistsError: If file already exists
        """
        path = Path(path)
        if path.exists():
            raise FileExistsError(f"WAL file already exists: {path}")

        path.parent.mkdir(parents=True, exist_ok=True)
        header = WALHeader.create(ledger_id)

        file = open(path, 'wb')
        try:
            file.write(header.to_bytes())
            file.flush()
            os.fsync(file.fileno())
        except OSError:
            file.close()
            raise

        return WALWriter(file, header, 0, NULL_HASH_BYTES, fsync_policy)

    @staticmethod
    def open(
        path: Union[str, Path],
        fsync_policy: str = FSYNC_PER_RECORD,
    ) -> 'WALWriter':
        """
        Open an existing WAL for appending, truncating any torn tail first.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"WAL file not found: {path}")

        last_sequence, last_hash, _ = recover_wal(path)
        header = WALReader(path).header

        file = open(path, 'r+b')
        file.seek(0, 2)

        return WALWriter(file, header, last_sequence + 1, last_hash, fsync_policy)

    @staticmethod
    def open_or_create(
        path: Union[str, Path],
        ledger_id: str,
        fsync_policy: str = FSYNC_PER_RECORD,
    ) -> 'WALWriter':
        if Path(path).exists():
            writer = WALWriter.open(path, fsync_policy)
            if writer.header.ledger_id != WALHeader.create(ledger_id).ledger_id:
                writer.close()
                raise WALHeaderError(
                    f"Ledger id mismatch: file={writer.header.ledger_id!r}, expected={ledger_id!r}"
                )
            return writer
        return WALWriter.create(path, ledger_id, fsync_policy)

    def append(self, payload: bytes) -> Tuple[int, bytes]:
        """
        Append one payload.

        Returns:
            Tuple of (sequence, record_hash)
        """
        if self._closed:
            raise WALError("WAL is closed")
        if not payload:
            raise ValueError("payload cannot be empty")

        record = WALRecord.create(self._next_sequence, payload, self._prev_hash)
        if record.record_len > MAX_RECORD_SIZE:
            raise ValueError(f"Record too large: {record.record_len} > {MAX_RECORD_SIZE}")

        start = self._file.tell()
        try:
            self._file.write(record.to_bytes())
            if self._fsync_policy == FSYNC_PER_RECORD:
                self._file.flush()
                os.fsync(self._file.fileno())
        except OSError:
            # Drop the partial record so the next append continues the chain
            self._file.seek(start)
            self._file.truncate()
            raise

        record_hash = record.compute_record_hash()
        self._prev_hash = record_hash
        self._next_sequence += 1
        return record.sequence, record_hash

    def sync(self) -> None:
        if not self._closed:
            self._file.flush()
            os.fsync(self._file.fileno())

    def close(self) -> None:
        if not self._closed:
            self.sync()
            self._file.close()
            self._closed = True

    def __enter__(self) -> 'WALWriter':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


# =============================================================================
# WAL READER
# =============================================================================

class WALReader:
    """
    WAL reader with chain validation.

    Usage:
        for record in WALReader(path):
            apply(record.payload)
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._header: Optional[WALHeader] = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def header(self) -> WALHeader:
        if self._header is None:
            with open(self._path, 'rb') as f:
                header_bytes = f.read(HEADER_SIZE)
            if len(header_bytes) < HEADER_SIZE:
                raise WALHeaderError("WAL file too small for header")
            self._header = WALHeader.from_bytes(header_bytes)
        return self._header

    @staticmethod
    def _iter_records_raw(path: Path) -> Iterator[Tuple[WALRecord, int]]:
        """
        Yield (record, offset) pairs, stopping at the first incomplete or
        corrupt record (the truncation point).
        """
        with open(path, 'rb') as f:
            f.seek(HEADER_SIZE)
            offset = HEADER_SIZE
            expected_sequence = 0

            while True:
                len_bytes = f.read(4)
                if len(len_bytes) < 4:
                    break

                record_len = struct.unpack('<I', len_bytes)[0]
                if record_len < RECORD_OVERHEAD or record_len > MAX_RECORD_SIZE:
                    break

                rest = f.read(record_len - 4)
                if len(rest) < record_len - 4:
                    break

                try:
                    record = WALRecord.from_bytes(len_bytes + rest, expected_sequence)
                except (WALCorruptionError, WALSequenceError):
                    break

                yield record, offset
                offset += record_len
                expected_sequence += 1

    def __iter__(self) -> Iterator[WALRecord]:
        """Iterate records, validating hash chain continuity."""
        self.header  # validates magic, version and CRC
        prev_hash = NULL_HASH_BYTES

        for record, _ in self._iter_records_raw(self._path):
            if record.prev_hash != prev_hash:
                raise WALChainError(
                    f"Hash chain break at seq {record.sequence}: "
                    f"expected prev_hash={prev_hash.hex()}, got={record.prev_hash.hex()}"
                )
            yield record
            prev_hash = record.compute_record_hash()

    def validate(self) -> Tuple[int, bytes]:
        """
        Validate the whole WAL.

        Returns:
            Tuple of (last_sequence, last_record_hash); (-1, NULL_HASH_BYTES) if empty
        """
        last_sequence = -1
        last_hash = NULL_HASH_BYTES
        for record in self:
            last_sequence = record.sequence
            last_hash = record.compute_record_hash()
        return last_sequence, last_hash

    def count(self) -> int:
        return sum(1 for _ in self)

    def trailing_bytes(self) -> int:
        """Bytes after the last valid record; non-zero means a torn tail."""
        end = HEADER_SIZE
        for record, offset in self._iter_records_raw(self._path):
            end = offset + record.record_len
        return self._path.stat().st_size - end


# =============================================================================
# WAL RECOVERY
# =============================================================================

def recover_wal(path: Union[str, Path]) -> Tuple[int, bytes, int]:
    """
    Truncate a WAL after its last valid record.

    Returns:
        Tuple of (last_sequence, last_record_hash, truncated_bytes)

    Raises:
        WALHeaderError: If header is invalid
        WALChainError: If a complete record breaks the hash chain
    """
    path = Path(path)
    reader = WALReader(path)
    reader.header  # validates magic, version and CRC

    last_sequence = -1
    last_hash = NULL_HASH_BYTES
    last_valid_offset = HEADER_SIZE

    for record, offset in WALReader._iter_records_raw(path):
        if record.prev_hash != last_hash:
            raise WALChainError(f"Hash chain break at seq {record.sequence}")
        last_sequence = record.sequence
        last_hash = record.compute_record_hash()
        last_valid_offset = offset + record.record_len

    file_size = path.stat().st_size
    truncated_bytes = file_size - last_valid_offset
    if truncated_bytes > 0:
        with open(path, 'r+b') as f:
            f.truncate(last_valid_offset)
            f.flush()
            os.fsync(f.fileno())

    return last_sequence, last_hash, truncated_bytes


__all__ = [
    'WAL_MAGIC',
    'WAL_VERSION',
    'HEADER_SIZE',
    'RECORD_OVERHEAD',
    'MAX_RECORD_SIZE',
    'NULL_HASH_BYTES',
    'FSYNC_PER_RECORD',
    'FSYNC_MANUAL',
    'WALError',
    'WALCorruptionError',
    'WALHeaderError',
    'WALChainError',
    'WALSequenceError',
    'WALHeader',
    'WALRecord',
    'WALWriter',
    'WALReader',
    'recover_wal',
    'compute_crc32',
]
