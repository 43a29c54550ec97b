"""
Delimited Record Reader
Splits a (possibly compressed) byte stream into start/end-tag delimited records
"""

import bz2
import gzip
import logging
import os
import sys
from typing import BinaryIO, Iterator, List, Optional, Tuple

from .exceptions import ConfigurationError, RecordReaderError
from .metrics import Metrics

logger = logging.getLogger(__name__)

# Extension -> opener for codecs whose streams cannot be seeked into
COMPRESSION_CODECS = {
    '.gz': gzip.open,
    '.bz2': bz2.open,
}

UNBOUNDED = sys.maxsize


class RecordBoundaryReader:
    """
    Yields every record that *starts* inside the split [start, end).

    A record runs from the start tag through the end tag inclusive. Once a
    start tag has matched, the reader keeps going past `end` to finish the
    record; it never begins a new record at or after `end`. Adjacent splits
    therefore produce each record exactly once.

    The reader is a one-shot iterator of (offset, record_bytes) pairs.
    """

    def __init__(self, stream: BinaryIO, start_tag: bytes, end_tag: bytes,
                 start: int = 0, end: Optional[int] = None, compressed: bool = False,
                 buffer_size: int = 64 * 1024, strict: bool = False,
                 metrics: Optional[Metrics] = None):
        """
        Initialize the reader

        Args:
            stream: Binary stream; already positioned at `start` when compressed
            start_tag: Literal delimiter opening a record
            end_tag: Literal delimiter closing a record
            start: Byte offset where the split begins
            end: Byte offset where the split ends (None = unbounded)
            compressed: Stream is not seekable; position is only counted
            buffer_size: Bytes pulled from the stream per read
            strict: Raise on position bookkeeping mismatches instead of logging
            metrics: Counter handle
        """
        if not start_tag or not end_tag:
            raise ConfigurationError("Record start and end tags must both be specified")
        if isinstance(start_tag, str):
            start_tag = start_tag.encode('utf-8')
        if isinstance(end_tag, str):
            end_tag = end_tag.encode('utf-8')

        self.stream = stream
        self.start_tag = start_tag
        self.end_tag = end_tag
        self.compressed = compressed
        self.strict = strict
        self.metrics = metrics if metrics is not None else Metrics()
        self._buffer_size = buffer_size

        if compressed:
            self.start = 0
            self.end = UNBOUNDED
        else:
            self.start = start
            self.end = UNBOUNDED if end is None else end
            self.stream.seek(start)

        # Bytes consumed so far, tracked by hand since compressed streams
        # cannot report a position
        self.pos = self.start
        self._chunk = b''
        self._index = 0
        self._record = bytearray()
        self._exhausted = False

    def __iter__(self) -> Iterator[Tuple[int, bytes]]:
        return self

    def __next__(self) -> Tuple[int, bytes]:
        record = self.next_record()
        if record is None:
            raise StopIteration
        return record

    def next_record(self) -> Optional[Tuple[int, bytes]]:
        """Return the next (offset, record) pair, or None once the split is done"""
        if self._exhausted:
            return None

        if self.pos < self.end and self._read_until_match(self.start_tag, within_block=False):
            record_start = self.pos - len(self.start_tag)
            self._record = bytearray(self.start_tag)
            try:
                if self._read_until_match(self.end_tag, within_block=True):
                    self.metrics.incr('reader.records')
                    return record_start, bytes(self._record)
                logger.debug(f"Stream ended inside record starting at {record_start}")
            finally:
                self._check_position()
                self._record = bytearray()

        self._exhausted = True
        return None

    def progress(self) -> float:
        if self.end == UNBOUNDED or self.end == self.start:
            return 1.0 if self._exhausted else 0.0
        return min(1.0, (self.pos - self.start) / float(self.end - self.start))

    def close(self):
        self.stream.close()

    def _read_byte(self) -> int:
        if self._index >= len(self._chunk):
            self._chunk = self.stream.read(self._buffer_size)
            self._index = 0
            if not self._chunk:
                return -1
        b = self._chunk[self._index]
        self._index += 1
        self.pos += 1
        return b

    def _read_until_match(self, match: bytes, within_block: bool) -> bool:
        i = 0
        while True:
            b = self._read_byte()
            if b == -1:
                return False
            if within_block:
                self._record.append(b)

            if b == match[i]:
                i += 1
                if i >= len(match):
                    return True
            else:
                i = 0

            # Past the split end and not part-way through a tag
            if not within_block and i == 0 and self.pos >= self.end:
                return False

    def _check_position(self):
        """Cross-check the byte counter against a seekable stream's position"""
        if self.compressed or not self.stream.seekable():
            return
        unread = len(self._chunk) - self._index
        actual = self.stream.tell() - unread
        if actual != self.pos:
            self.metrics.incr('reader.position_mismatch')
            message = f"Bytes consumed error: {self.pos} != {actual}"
            if self.strict:
                raise RecordReaderError(message)
            logger.warning(message)


def is_compressed(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in COMPRESSION_CODECS


def open_split(path: str, start: int, length: Optional[int], start_tag, end_tag,
               strict: bool = False, metrics: Optional[Metrics] = None) -> RecordBoundaryReader:
    """
    Open a reader over one split of a file

    Compressed files are always read whole from the beginning.

    Args:
        path: Input file path
        start: Split start offset
        length: Split length in bytes (None = to end of file)
        start_tag: Record start delimiter
        end_tag: Record end delimiter
        strict: Forwarded to the reader
        metrics: Counter handle

    Returns:
        RecordBoundaryReader positioned on the split
    """
    ext = os.path.splitext(path)[1].lower()
    if ext in COMPRESSION_CODECS:
        logger.info(f"Reading compressed file {path}")
        stream = COMPRESSION_CODECS[ext](path, 'rb')
        return RecordBoundaryReader(stream, start_tag, end_tag, compressed=True,
                                    strict=strict, metrics=metrics)

    logger.info(f"Reading uncompressed file {path} [{start}, +{length})")
    stream = open(path, 'rb')
    end = None if length is None else start + length
    return RecordBoundaryReader(stream, start_tag, end_tag, start=start, end=end,
                                strict=strict, metrics=metrics)


def compute_splits(path: str, split_size: int) -> List[Tuple[int, Optional[int]]]:
    """
    Cut a file into (start, length) windows of at most `split_size` bytes

    Compressed files are a single unbounded split.
    """
    if split_size <= 0:
        raise ConfigurationError(f"split_size must be positive, got {split_size}")
    if is_compressed(path):
        return [(0, None)]

    file_size = os.path.getsize(path)
    if file_size == 0:
        return [(0, 0)]
    return [(offset, min(split_size, file_size - offset))
            for offset in range(0, file_size, split_size)]


def read_split(path: str, start: int, length: Optional[int], start_tag, end_tag,
               strict: bool = False) -> Tuple[List[Tuple[int, bytes]], Metrics]:
    """Read every record of one split; runs as an independent task"""
    metrics = Metrics()
    reader = open_split(path, start, length, start_tag, end_tag, strict=strict, metrics=metrics)
    try:
        records = list(reader)
    finally:
        reader.close()
    metrics.incr('reader.splits')
    return records, metrics
