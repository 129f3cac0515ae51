# Sega's CMP container, as used by games on the Saturn.
#
# A CMP file is a small header followed by the compressed body.
#
# Header (big endian):
#   0x00  1  reserved, always 0
#   0x01  1  size code: 0x0 byte, 0x4 word, 0xC longword
#   0x02  2  decompressed size
# or, for sizes above 0xFFFF:
#   0x02  2  padding
#   0x04  4  decompressed size
#
# The command framing below has not been checked against output from Sega's
# reference encoder yet, so byte-exact compatibility with game data is not
# confirmed.  All of its values are the constants in this module.
#
# The body is a sequence of commands working on units of 1, 2 or 4 bytes.
# The first byte of a command is a control byte.  The top bit (mask 0x80) is
# the type, and the bottom 7 bits (mask 0x7f) are a count.
#
# type (mask 0x80):
#   0x00: literal units follow, count + 1 of them, copy directly to output
#   0x80: a single unit follows, repeat it count + 2 times in the output
#
# There is no end marker; the decoder stops once it has produced the size
# given in the header.

import enum
import struct

import numpy as np


SHORT_SIZE_HEADER = struct.Struct('>BBH')
LONG_SIZE_HEADER = struct.Struct('>BBHI')

# Decompressed sizes above this need the long header.
MAX_SHORT_SIZE = 0xFFFF

# The SDK routines take the unit count as a C int.
MAX_UNITS = 0x7FFFFFFF

# Constants for the type bit.
TYPE_LITERAL = 0x00
TYPE_REPEAT = 0x80

COUNT_MASK = 0x7F

# Largest literal and repeat spans a single command can describe.
MAX_LITERAL = COUNT_MASK + 1
MAX_REPEAT = COUNT_MASK + 2


class UnitWidth(enum.Enum):
    # Names come from the SH-2 data sizes.
    BYTE = (1, 0x0)
    WORD = (2, 0x4)
    LONGWORD = (4, 0xC)

    def __init__(self, unit_size, size_code):
        self.unit_size = unit_size
        self.size_code = size_code

    @property
    def dtype(self):
        return np.dtype(f'>u{self.unit_size}')


# Shortest run that gets a repeat command.  A repeat costs a control byte plus
# one unit, and breaking a literal span costs another control byte, so two
# repeated bytes are better left inside the literal.  Provisional, like the
# command framing.
MIN_REPEAT = {
    UnitWidth.BYTE: 3,
    UnitWidth.WORD: 2,
    UnitWidth.LONGWORD: 2,
}


class CompressionError(ValueError):
    pass


class MisalignedInputError(CompressionError):
    def __init__(self, expected_multiple):
        super().__init__(
            f'Provided buffer is not an even multiple of {expected_multiple * 8} bits'
        )
        self.expected_multiple = expected_multiple


class EncodingFailedError(CompressionError):
    def __init__(self, message='Unable to compress data!'):
        super().__init__(message)


def find_runs(units):
    # (start, length) for each maximal run of identical units
    if not len(units):
        return
    starts = np.concatenate(([0], np.flatnonzero(units[1:] != units[:-1]) + 1))
    lengths = np.diff(np.append(starts, len(units)))
    yield from zip(starts.tolist(), lengths.tolist())


def compress(data, width: UnitWidth) -> bytes:
    # Word and longword buffers must be an even multiple of the unit size.
    data = bytes(data)
    size = width.unit_size

    if len(data) % size:
        raise MisalignedInputError(size)

    total_units = len(data) // size
    if total_units > MAX_UNITS:
        raise EncodingFailedError(f'Too many units to compress: {total_units}')
    if not total_units:
        return b''

    output = bytearray()
    emitted = 0

    # Literals are always one contiguous span of the input, kept as unit
    # offsets until flushed.
    literal_start = 0
    literal_count = 0

    def flush_literals():
        nonlocal literal_count, emitted, output

        offset = literal_start
        while literal_count:
            # Don't output more at once than fits in the count field
            block = min(literal_count, MAX_LITERAL)
            output.append(TYPE_LITERAL | (block - 1))
            output += data[offset * size:(offset + block) * size]
            offset += block
            literal_count -= block
            emitted += block

    def emit_repeats(unit, count):
        nonlocal emitted, output

        while count >= min_repeat:
            repeat = min(count, MAX_REPEAT)
            output.append(TYPE_REPEAT | (repeat - 2))
            output += unit
            count -= repeat
            emitted += repeat
        return count

    min_repeat = MIN_REPEAT[width]
    units = np.frombuffer(data, dtype=width.dtype)

    for start, length in find_runs(units):
        if length < min_repeat:
            if not literal_count:
                literal_start = start
            literal_count += length
            continue

        flush_literals()
        leftover = emit_repeats(data[start * size:(start + 1) * size], length)
        if leftover:
            # Tail too short to repeat; it opens the next literal span
            literal_start = start + length - leftover
            literal_count = leftover

    flush_literals()

    if emitted != total_units:
        raise EncodingFailedError()

    return bytes(output)


def make_header(decompressed_size: int, width: UnitWidth) -> bytes:
    # decompressed_size is the length of the buffer passed to compress, not
    # the length of its output.
    if decompressed_size > MAX_SHORT_SIZE:
        return LONG_SIZE_HEADER.pack(0, width.size_code, 0, decompressed_size)
    return SHORT_SIZE_HEADER.pack(0, width.size_code, decompressed_size)


def pack(data, width: UnitWidth) -> bytes:
    # Most games store the header immediately followed by the body.
    data = bytes(data)
    body = compress(data, width)
    return make_header(len(data), width) + body


create_header = encode_header = make_header
encode_body = compress
