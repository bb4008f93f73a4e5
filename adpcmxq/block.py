"""
Block framing for IMA ADPCM.

A block is independently decodable. Per channel it starts with a 4-byte
header:

  +0  initial sample, s16 little-endian (the block's first sample, stored raw)
  +2  initial step index, 0..88
  +3  reserved, always 0x00

followed by the codes of the remaining samples in chunks of 8 samples:
4 bytes per channel per chunk, channels in order, low nibble first. A block of
M samples per channel therefore needs (M - 1) % 8 == 0. This is the layout of
the data chunk of a WAVE_FORMAT_IMA_ADPCM file.
"""

import logging
import struct

import numpy as np

from .adpcm import (
    MAX_INDEX, AdpcmState, InvalidParamError, average_delta, pcm_list,
    step_index_for_delta, transition,
)
from .lookahead import DEFAULT_METRIC, get_metric
from .stream import encode_codes, pack_codes, unpack_codes

logger = logging.getLogger(__name__)

HEADER_SIZE = 4
CHUNK_SAMPLES = 8
CHUNK_SIZE = 4
DEFAULT_LOOKAHEAD = 3


class BlockContext:
    """Per-channel encoder states plus the settings shared by every block."""

    def __init__(self, states, lookahead=DEFAULT_LOOKAHEAD, metric=DEFAULT_METRIC):
        self.states = list(states)
        self.lookahead = lookahead
        self.metric = get_metric(metric)
        self.error = 0

    @property
    def channels(self):
        return len(self.states)


def block_size_for(samples_per_block, channels):
    """Bytes in a block holding `samples_per_block` samples per channel."""
    return channels * (HEADER_SIZE + (samples_per_block - 1) // CHUNK_SAMPLES * CHUNK_SIZE)


def samples_per_block_for(block_size, channels):
    """Samples per channel that fit in a block of `block_size` bytes."""
    chunks = (block_size - HEADER_SIZE * channels) // (CHUNK_SIZE * channels)
    return chunks * CHUNK_SAMPLES + 1


def initial_deltas(pcm, channels):
    """Per-channel average deltas of interleaved PCM, for create_context."""
    samples = pcm_list(pcm)
    return [average_delta(samples[ch::channels]) for ch in range(channels)]


def create_context(channels, lookahead=DEFAULT_LOOKAHEAD, initial_deltas=None, metric=DEFAULT_METRIC):
    if channels < 1:
        raise InvalidParamError(f"Channel count must be positive: {channels}")
    if lookahead < 0:
        raise InvalidParamError(f"Lookahead must not be negative: {lookahead}")
    if initial_deltas is None:
        initial_deltas = [0] * channels
    if len(initial_deltas) < channels:
        raise InvalidParamError(f"Need {channels} initial deltas, got {len(initial_deltas)}")

    states = [AdpcmState(0, step_index_for_delta(initial_deltas[ch])) for ch in range(channels)]
    return BlockContext(states, lookahead, metric)


def free_context(context):
    context.states = []


def encode_block(context, pcm, sample_count):
    """
    Encodes `sample_count` interleaved frames into one block.
    The channel step indices carry over into the next block; the predicted
    sample restarts from each block's first sample.
    """
    if context is None or not context.states:
        raise InvalidParamError("No encoder context given")
    if sample_count < 1 or (sample_count - 1) % CHUNK_SAMPLES:
        raise InvalidParamError(
            f"Block sample count must be 8n + 1, got {sample_count}")

    channels = context.channels
    samples = pcm_list(pcm)
    if len(samples) < sample_count * channels:
        raise InvalidParamError(
            f"Need {sample_count * channels} samples, got {len(samples)}")

    header = bytearray()
    channel_codes = []

    for ch in range(channels):
        run = samples[ch:sample_count * channels:channels]
        state = AdpcmState(run[0], context.states[ch].index)
        header += struct.pack('<hBB', state.sample, state.index, 0)

        state, codes, _, error = encode_codes(state, run[1:], context.lookahead, context.metric)
        context.states[ch] = state
        context.error += error
        channel_codes.append(codes)

    payload = bytearray()
    for start in range(0, sample_count - 1, CHUNK_SAMPLES):
        for codes in channel_codes:
            payload += pack_codes(codes[start:start + CHUNK_SAMPLES])

    logger.debug("Encoded block: %d ch x %d samples, %d bytes", channels, sample_count, len(header) + len(payload))
    return bytes(header + payload)


def decode_block(data, channels):
    """
    Decodes one block into interleaved int16 samples.
    A short or corrupt header yields an empty array so the caller can skip to
    the next block.
    """
    if data is None:
        raise InvalidParamError("No ADPCM buffer given")
    if channels < 1:
        raise InvalidParamError(f"Channel count must be positive: {channels}")

    empty = np.zeros(0, dtype=np.int16)
    if len(data) < HEADER_SIZE * channels:
        logger.warning("Block too short for %d channel headers: %d bytes", channels, len(data))
        return empty

    states = []
    for ch in range(channels):
        sample, index, reserved = struct.unpack_from('<hbB', data, ch * HEADER_SIZE)
        if index < 0 or index > MAX_INDEX or reserved:
            logger.warning("Corrupt block header on channel %d: index=%d reserved=%#04x", ch, index, reserved)
            return empty
        states.append(AdpcmState(sample, index))

    chunks = (len(data) - HEADER_SIZE * channels) // (CHUNK_SIZE * channels)
    out = np.empty((1 + chunks * CHUNK_SAMPLES, channels), dtype=np.int16)
    out[0] = [state.sample for state in states]

    offset = HEADER_SIZE * channels
    for chunk in range(chunks):
        row = 1 + chunk * CHUNK_SAMPLES
        for ch in range(channels):
            state = states[ch]
            for i, code in enumerate(unpack_codes(data[offset:offset + CHUNK_SIZE])):
                state, out[row + i, ch] = transition(state, code)
            states[ch] = state
            offset += CHUNK_SIZE

    return out.ravel()
