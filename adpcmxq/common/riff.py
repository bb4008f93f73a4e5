"""
RIFF chunk helpers. All integers little-endian.
"""

import struct


def pu16(v):  return struct.pack('<H', v & 0xFFFF)
def pu32(v):  return struct.pack('<I', v & 0xFFFFFFFF)


def read_u16_le(data, offset=0):
    return struct.unpack_from('<H', data, offset)[0]


def read_u32_le(data, offset=0):
    return struct.unpack_from('<I', data, offset)[0]


def fourcc(s):
    """4-byte ASCII tag."""
    return s.encode('ascii')[:4].ljust(4, b'\x00')


def riff_chunk(tag, data):
    """Pack a RIFF chunk: 4-byte tag + 4-byte LE size + data (padded to even)."""
    if isinstance(data, list):
        data = b''.join(data)
    size = len(data)
    chunk = fourcc(tag) + pu32(size) + data
    if size % 2:
        chunk += b'\x00'   # RIFF pad byte
    return chunk


def riff_file(form_type, chunks):
    """Top-level RIFF container around already packed chunks."""
    return riff_chunk('RIFF', fourcc(form_type) + b''.join(chunks))


def iter_chunks(data, offset=12):
    """Yields (tag, payload) for each chunk after the RIFF header."""
    while offset + 8 <= len(data):
        tag = data[offset:offset + 4].decode('ascii', errors='replace')
        size = read_u32_le(data, offset + 4)
        start = offset + 8
        yield tag, data[start:start + size]
        offset = start + size + (size & 1)


def parse_riff(data, form_type):
    """Validates the RIFF header and returns {tag: payload} (first of each tag)."""
    if len(data) < 12 or data[0:4] != b'RIFF' or data[8:12] != fourcc(form_type):
        raise ValueError(f"Not a RIFF/{form_type} file")

    chunks = {}
    for tag, payload in iter_chunks(data):
        chunks.setdefault(tag, payload)
    return chunks
