"""
Sample-by-sample ADPCM over a contiguous run, without block framing.
Two codes per byte, low nibble first.
"""

import numpy as np

from .adpcm import InvalidParamError, pcm_list, transition
from .lookahead import DEFAULT_METRIC, get_metric, minimum_error


def encode_codes(state, samples, lookahead=0, metric=DEFAULT_METRIC):
    """
    Encodes a list of ints into codes.
    Each sample sees the rest of the run, up to `lookahead` samples, as its
    search window. Returns (state, codes, reconstructed, error).
    """
    metric = get_metric(metric)
    codes = []
    reconstructed = []
    error = 0

    for i in range(len(samples)):
        code, sample_error, _ = minimum_error(state, samples, lookahead, metric, start=i)
        state, sample = transition(state, code)

        codes.append(code)
        reconstructed.append(sample)
        error += sample_error

    return state, codes, reconstructed, error


def pack_codes(codes):
    out = bytearray((len(codes) + 1) // 2)
    for i, code in enumerate(codes):
        if i % 2 == 0:
            out[i // 2] = code
        else:
            out[i // 2] |= code << 4
    return bytes(out)


def unpack_codes(data, count=None):
    if count is None:
        count = len(data) * 2

    codes = []
    for byte in data:
        codes.append(byte & 0x0F)
        codes.append((byte >> 4) & 0x0F)
        if len(codes) >= count:
            break
    return codes[:count]


def encode(state, samples, lookahead=0, metric=DEFAULT_METRIC):
    """
    Encodes 16-bit PCM into packed 4-bit codes.
    Returns (state, packed bytes, accumulated error).
    """
    if state is None:
        raise InvalidParamError("No encoder state given")
    if lookahead < 0:
        raise InvalidParamError(f"Lookahead must not be negative: {lookahead}")

    samples = pcm_list(samples)
    if not samples:
        raise InvalidParamError("Nothing to encode")

    state, codes, _, error = encode_codes(state, samples, lookahead, metric)
    return state, pack_codes(codes), error


def decode(state, data, count=None):
    """
    Decodes packed codes. `count` is the number of samples (codes) to decode
    and defaults to two per byte.
    Returns (state, int16 numpy array).
    """
    if state is None:
        raise InvalidParamError("No decoder state given")
    if data is None:
        raise InvalidParamError("No ADPCM buffer given")

    if count is None:
        count = len(data) * 2
    if count <= 0 or count > len(data) * 2:
        raise InvalidParamError(f"Cannot decode {count} samples from {len(data)} bytes")

    samples = []
    for code in unpack_codes(data, count):
        state, sample = transition(state, code)
        samples.append(sample)

    return state, np.array(samples, dtype=np.int16)


class StreamEncoder:
    """
    Keeps encoder state between calls, for feeding a stream in pieces.
    The lookahead window never crosses a call boundary.
    """

    def __init__(self, state, lookahead=0, metric=DEFAULT_METRIC):
        self.state = state
        self.lookahead = lookahead
        self.metric = metric
        self.error = 0

    def encode(self, samples):
        self.state, data, error = encode(self.state, samples, self.lookahead, self.metric)
        self.error += error
        return data


class StreamDecoder:
    """
    Keeps decoder state between calls, the counterpart of StreamEncoder.
    """

    def __init__(self, state):
        self.state = state

    def decode(self, data, count=None):
        self.state, samples = decode(self.state, data, count)
        return samples
