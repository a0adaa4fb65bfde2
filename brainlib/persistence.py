"""
persistence.py
~~~~~~~~~~~~~~

Line-based text format for network parameters.

File layout (suffix `.brain`):

    BRAIN <version> <mode> [<key>]
    <layer_counts separated by spaces>
    w_0 w_1 ... w_{k-1} bias          one line per (synapse layer, neuron)

`mode` selects the codec applied to every line after the header. The
`plain` codec stores text as is. The `legacy` codec shifts each printable
character by a rolling offset that starts at `key` and doubles modulo the
printable range at every position. It only hides the numbers from casual
inspection and is not a security feature.

Numbers are written with repr() so a save/load round trip reproduces every
float exactly.
"""

import logging
import os
import time
from typing import List, Optional, Tuple

import numpy as np

from brainlib.errors import ConfigurationError, CorruptFileError, MissingFileError
from brainlib.matrix import ResizableMatrix
from brainlib.parameters import ParameterStore

logger = logging.getLogger(__name__)

FILE_SUFFIX = '.brain'
MAGIC = 'BRAIN'
FORMAT_VERSION = 1

PRINTABLE_FIRST = 32
PRINTABLE_SIZE = 95  # ' ' (32) through '~' (126)


class PlainCodec:
    """Stores the body text unchanged."""

    mode = 'plain'

    def header_fields(self) -> List[str]:
        return [self.mode]

    def encode(self, text: str) -> str:
        return text

    def decode(self, text: str) -> str:
        return text


class LegacyCodec:
    """
    Additive rolling-offset obfuscation over the printable ASCII range.

    Args:
        key: Seed of the offset sequence. Must not be a multiple of 95,
            otherwise the offset would stay zero
    """

    mode = 'legacy'

    def __init__(self, key: int):
        if key % PRINTABLE_SIZE == 0:
            raise ConfigurationError(
                f"Legacy key must not be a multiple of {PRINTABLE_SIZE}, "
                f"got {key}"
            )
        self.key = key

    @staticmethod
    def derive_key(layer_counts, millis: Optional[int] = None) -> int:
        """Key from the layer widths and the wall clock, in 1..94."""
        if millis is None:
            millis = int(time.time() * 1000)
        seed = sum((i + 1) * c for i, c in enumerate(layer_counts)) + millis
        return seed % (PRINTABLE_SIZE - 1) + 1

    def header_fields(self) -> List[str]:
        return [self.mode, str(self.key)]

    def _shift(self, text: str, direction: int) -> str:
        offset = self.key % PRINTABLE_SIZE
        out = []
        for ch in text:
            code = ord(ch)
            if PRINTABLE_FIRST <= code < PRINTABLE_FIRST + PRINTABLE_SIZE:
                code = PRINTABLE_FIRST + (
                    code - PRINTABLE_FIRST + direction * offset
                ) % PRINTABLE_SIZE
            out.append(chr(code))
            offset = (offset * 2) % PRINTABLE_SIZE
        return ''.join(out)

    def encode(self, text: str) -> str:
        return self._shift(text, 1)

    def decode(self, text: str) -> str:
        return self._shift(text, -1)


CODECS = (PlainCodec.mode, LegacyCodec.mode)


def make_codec(mode: str, layer_counts=None, key: Optional[int] = None):
    """
    Build the codec for a storage mode.

    Args:
        mode: 'plain' or 'legacy'
        layer_counts: Used to derive a legacy key when none is given
        key: Explicit legacy key

    Raises:
        ConfigurationError: If the mode is unknown
    """
    if mode == PlainCodec.mode:
        return PlainCodec()
    if mode == LegacyCodec.mode:
        if key is None:
            key = LegacyCodec.derive_key(layer_counts or [])
        return LegacyCodec(key)
    raise ConfigurationError(
        f"Unknown storage mode {mode!r}, expected one of {CODECS}"
    )


# ============================================================================
# ENCODING
# ============================================================================

def encode_store(store: ParameterStore, mode: str = 'plain',
                 key: Optional[int] = None) -> str:
    """
    Serialize a parameter store to the text format.

    Args:
        store: Parameters to write
        mode: 'plain' or 'legacy'
        key: Legacy key; derived from the layer counts and clock if None

    Returns:
        Complete file contents, newline terminated
    """
    codec = make_codec(mode, store.layer_counts, key)
    lines = [' '.join(str(c) for c in store.layer_counts)]
    for weights, biases in zip(store.weights, store.biases):
        for row, bias in zip(weights.values, biases.values[:, 0]):
            tokens = [repr(float(w)) for w in row]
            tokens.append(repr(float(bias)))
            lines.append(' '.join(tokens))
    body = '\n'.join(lines) + '\n'
    header = ' '.join([MAGIC, str(FORMAT_VERSION)] + codec.header_fields())
    return header + '\n' + codec.encode(body)


# ============================================================================
# DECODING
# ============================================================================

def _parse_header(line: str, path: Optional[str]):
    fields = line.strip().split()
    if len(fields) < 3 or fields[0] != MAGIC:
        raise CorruptFileError(
            f"Not a network file, bad header {line.strip()!r}", path=path
        )
    try:
        version = int(fields[1])
    except ValueError:
        raise CorruptFileError(
            f"Bad format version {fields[1]!r}", path=path
        ) from None
    if version != FORMAT_VERSION:
        raise CorruptFileError(
            f"Unsupported format version {version}", path=path
        )
    mode = fields[2]
    if mode == PlainCodec.mode and len(fields) == 3:
        return PlainCodec()
    if mode == LegacyCodec.mode and len(fields) == 4:
        try:
            return LegacyCodec(int(fields[3]))
        except ValueError:
            raise CorruptFileError(
                f"Bad legacy key {fields[3]!r}", path=path
            ) from None
    raise CorruptFileError(
        f"Unknown storage mode in header {line.strip()!r}", path=path
    )


def _split_file(text: str, path: Optional[str]) -> Tuple[object, str]:
    header, newline, body = text.partition('\n')
    if not newline:
        raise CorruptFileError("File ends after the header", path=path)
    return _parse_header(header, path), body


def _parse_layer_counts(line: str, path: Optional[str]) -> List[int]:
    counts = []
    for column, token in enumerate(line.split()):
        try:
            count = int(token)
        except ValueError:
            raise CorruptFileError(
                f"Layer count {token!r} is not an integer", path=path,
                column=column
            ) from None
        if count < 1:
            raise CorruptFileError(
                f"Layer count {count} is below one", path=path, column=column
            )
        counts.append(count)
    if len(counts) < 2:
        raise CorruptFileError(
            f"Need at least two layer counts, got {counts}", path=path
        )
    return counts


def _parse_row(line: str, expected: int, path: Optional[str],
               matrix: int, row: int) -> List[float]:
    tokens = line.split()
    if len(tokens) != expected:
        raise CorruptFileError(
            f"Expected {expected} values, found {len(tokens)}", path=path,
            matrix=matrix, row=row, column=min(len(tokens), expected)
        )
    values = []
    for column, token in enumerate(tokens):
        try:
            values.append(float(token))
        except ValueError:
            raise CorruptFileError(
                f"Value {token!r} is not a number", path=path,
                matrix=matrix, row=row, column=column
            ) from None
    return values


def decode_store(text: str, path: Optional[str] = None) -> ParameterStore:
    """
    Parse the text format back into a parameter store.

    Args:
        text: Complete file contents
        path: File name used in error messages

    Returns:
        ParameterStore with the stored layer counts and values

    Raises:
        CorruptFileError: On any malformed header, count, row or token
    """
    codec, body = _split_file(text, path)
    lines = codec.decode(body).split('\n')
    if lines and lines[-1] == '':
        lines.pop()
    if not lines:
        raise CorruptFileError("Missing layer counts line", path=path)

    counts = _parse_layer_counts(lines[0], path)
    rows = lines[1:]
    expected_rows = sum(counts[1:])
    if len(rows) < expected_rows:
        missing = len(rows)
        matrix = 0
        while missing >= counts[matrix + 1]:
            missing -= counts[matrix + 1]
            matrix += 1
        raise CorruptFileError(
            f"File is truncated, expected {expected_rows} parameter rows, "
            f"found {len(rows)}", path=path, matrix=matrix, row=missing
        )
    if len(rows) > expected_rows:
        raise CorruptFileError(
            f"Unexpected data after {expected_rows} parameter rows",
            path=path
        )

    weights = []
    biases = []
    position = 0
    for l in range(len(counts) - 1):
        parsed = []
        for r in range(counts[l + 1]):
            parsed.append(_parse_row(rows[position], counts[l] + 1, path, l, r))
            position += 1
        block = np.array(parsed, dtype=float)
        weights.append(ResizableMatrix(block[:, :-1]))
        biases.append(ResizableMatrix(block[:, -1:]))
    return ParameterStore(counts, weights, biases)


def read_header(path: str) -> Tuple[int, str, List[int]]:
    """
    Read the format version, storage mode and layer counts of a file
    without parsing its parameters.

    Raises:
        MissingFileError: If the file does not exist
        CorruptFileError: If the header or counts line is malformed
    """
    if not os.path.isfile(path):
        raise MissingFileError("Network file not found", path=path)
    try:
        with open(path, 'r', encoding='ascii', newline='') as f:
            header = f.readline()
            counts_line = f.readline()
    except UnicodeDecodeError as e:
        raise CorruptFileError(
            f"File contains non-ASCII data: {e.reason}", path=path
        ) from e
    codec = _parse_header(header, path)
    counts = _parse_layer_counts(codec.decode(counts_line).rstrip('\n'), path)
    return FORMAT_VERSION, codec.mode, counts


# ============================================================================
# FILE I/O
# ============================================================================

def write_store(store: ParameterStore, path: str, mode: str = 'plain',
                key: Optional[int] = None) -> str:
    """
    Write a parameter store to `path`.

    Returns:
        The path written
    """
    text = encode_store(store, mode, key)
    with open(path, 'w', encoding='ascii', newline='\n') as f:
        f.write(text)
    logger.info(
        f"Saved network {store.layer_counts} to {path} (mode={mode})"
    )
    return path


def read_store(path: str) -> ParameterStore:
    """
    Load a parameter store from `path`.

    Raises:
        MissingFileError: If the file does not exist
        CorruptFileError: If the contents cannot be decoded
    """
    if not os.path.isfile(path):
        raise MissingFileError("Network file not found", path=path)
    try:
        with open(path, 'r', encoding='ascii', newline='') as f:
            text = f.read()
    except UnicodeDecodeError as e:
        raise CorruptFileError(
            f"File contains non-ASCII data: {e.reason}", path=path
        ) from e
    store = decode_store(text, path)
    logger.info(f"Loaded network {store.layer_counts} from {path}")
    return store


def file_path(directory: str, name: str) -> str:
    """Path of the network file called `name` inside `directory`."""
    if name.endswith(FILE_SUFFIX):
        return os.path.join(directory, name)
    return os.path.join(directory, name + FILE_SUFFIX)
