import logging
import math

import numpy as np
import pytest

from adpcmxq.adpcm import AdpcmState, InvalidParamError
from adpcmxq.block import (
    block_size_for, create_context, decode_block, encode_block, free_context,
    initial_deltas, samples_per_block_for,
)
from adpcmxq.stream import decode, encode


def stereo(frames):
    t = np.arange(frames)
    left = 8000 * np.sin(2 * math.pi * 440 * t / 22050)
    right = 12000 * np.sin(2 * math.pi * 660 * t / 22050 + 1.0)
    return np.round(np.stack([left, right], axis=1)).astype(np.int16)


def test_block_sizes():
    assert block_size_for(505, 1) == 256
    assert samples_per_block_for(256, 1) == 505
    assert block_size_for(1017, 2) == 1024
    assert samples_per_block_for(1024, 2) == 1017
    assert samples_per_block_for(1000, 3) == 8 * ((1000 - 12) // 12) + 1


def test_header_layout():
    pcm = stereo(17)
    context = create_context(2, lookahead=0, initial_deltas=[0, 1000])
    block = encode_block(context, pcm, 17)

    assert len(block) == block_size_for(17, 2) == 2 * 4 + 2 * 2 * 4
    assert block[0:4] == int(pcm[0, 0]).to_bytes(2, 'little', signed=True) + bytes([0, 0])
    assert block[4:8] == int(pcm[0, 1]).to_bytes(2, 'little', signed=True) + bytes([51, 0])


@pytest.mark.parametrize("lookahead", [0, 2])
def test_round_trip_matches_stream_codec(lookahead):
    frames = 33
    pcm = stereo(frames)
    deltas = initial_deltas(pcm, 2)
    context = create_context(2, lookahead, deltas)
    indexes = [state.index for state in context.states]

    block = encode_block(context, pcm, frames)
    decoded = decode_block(block, 2).reshape(-1, 2)
    assert decoded.shape == (frames, 2)

    for ch in range(2):
        start = AdpcmState(int(pcm[0, ch]), indexes[ch])
        end, data, _ = encode(start, pcm[1:, ch], lookahead)
        _, expected = decode(start, data, count=frames - 1)

        assert decoded[0, ch] == pcm[0, ch]
        assert decoded[1:, ch].tolist() == expected.tolist()
        assert context.states[ch] == end


def test_interleaving_follows_chunks():
    frames = 17
    pcm = stereo(frames)
    context = create_context(2, 0)
    block = encode_block(context, pcm, frames)

    left = create_context(1, 0)
    right = create_context(1, 0)
    left_block = encode_block(left, pcm[:, 0], frames)
    right_block = encode_block(right, pcm[:, 1], frames)

    assert block[8:12] == left_block[4:8]
    assert block[12:16] == right_block[4:8]
    assert block[16:20] == left_block[8:12]
    assert block[20:24] == right_block[8:12]


def test_state_carries_between_blocks():
    pcm = stereo(18)[:, 0]
    context = create_context(1, 1, [500])
    encode_block(context, pcm[:9], 9)
    index = context.states[0].index

    second = encode_block(context, pcm[9:], 9)
    assert second[0:2] == int(pcm[9]).to_bytes(2, 'little', signed=True)
    assert second[2] == index
    assert context.error > 0


def test_single_sample_block():
    context = create_context(1)
    block = encode_block(context, [1234], 1)
    assert block == bytes([0xD2, 0x04, 0, 0])
    assert decode_block(block, 1).tolist() == [1234]


@pytest.mark.parametrize("offset,value", [(3, 1), (3, 0xFF), (2, 89), (2, 255), (6, 89), (7, 2)])
def test_corrupt_header_rejected(offset, value):
    context = create_context(2, 0)
    block = bytearray(encode_block(context, stereo(9), 9))
    block[offset] = value

    decoded = decode_block(bytes(block), 2)
    assert len(decoded) == 0
    assert decoded.dtype == np.int16


def test_short_block_rejected():
    assert len(decode_block(b'\x00\x00\x00', 1)) == 0
    assert len(decode_block(b'\x00' * 7, 2)) == 0


def test_partial_trailing_chunk_ignored():
    context = create_context(1, 0)
    block = encode_block(context, stereo(17)[:, 0], 17)
    assert len(decode_block(block[:-1], 1)) == 9


def test_invalid_params():
    context = create_context(1)
    with pytest.raises(InvalidParamError):
        encode_block(context, np.zeros(10, dtype=np.int16), 10)
    with pytest.raises(InvalidParamError):
        encode_block(context, np.zeros(8, dtype=np.int16), 9)
    with pytest.raises(InvalidParamError):
        encode_block(context, [], 0)
    with pytest.raises(InvalidParamError):
        create_context(0)
    with pytest.raises(InvalidParamError):
        create_context(1, lookahead=-1)
    with pytest.raises(InvalidParamError):
        create_context(2, initial_deltas=[5])
    with pytest.raises(InvalidParamError):
        decode_block(None, 1)
    with pytest.raises(InvalidParamError):
        decode_block(b'\x00' * 8, 0)

    free_context(context)
    with pytest.raises(InvalidParamError):
        encode_block(context, [0], 1)


def test_corrupt_block_warning(caplog):
    context = create_context(1, 0)
    block = bytearray(encode_block(context, [0] * 9, 9))
    block[3] = 0x10

    with caplog.at_level(logging.WARNING, logger='adpcmxq.block'):
        assert len(decode_block(bytes(block), 1)) == 0

    record = caplog.records[-1]
    assert record.args == (0, 0, 0x10)
    assert record.getMessage() == "Corrupt block header on channel 0: index=0 reserved=0x10"
