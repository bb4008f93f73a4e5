"""
IMA/DVI ADPCM adaptive state.

Step tables, the per-channel quantizer state and the single-step transition
that both the encoder and the decoder replay. All arithmetic is integer so an
encoder's state always matches what any conforming decoder reconstructs.
"""

from collections import namedtuple

import numpy as np

# Standard DVI/IMA tables
STEP_TABLE = (
    7, 8, 9, 10, 11, 12, 13, 14, 16, 17,
    19, 21, 23, 25, 28, 31, 34, 37, 41, 45,
    50, 55, 60, 66, 73, 80, 88, 97, 107, 118,
    130, 143, 157, 173, 190, 209, 230, 253, 279, 307,
    337, 371, 408, 449, 494, 544, 598, 658, 724, 796,
    876, 963, 1060, 1166, 1282, 1411, 1552, 1707, 1878, 2066,
    2272, 2499, 2749, 3024, 3327, 3660, 4026, 4428, 4871, 5358,
    5894, 6484, 7132, 7845, 8630, 9493, 10442, 11487, 12635, 13899,
    15289, 16818, 18500, 20350, 22385, 24623, 27086, 29794, 32767
)

# Keyed by the three magnitude bits of a code
INDEX_TABLE = (-1, -1, -1, -1, 2, 4, 6, 8)

MAX_INDEX = len(STEP_TABLE) - 1
PCM_MIN = -32768
PCM_MAX = 32767


class InvalidParamError(ValueError):
    """Raised for absent buffers, non-positive counts or out-of-range seeds."""


AdpcmState = namedtuple('AdpcmState', ['sample', 'index'])
AdpcmState.__doc__ = "Predicted sample and step index of one channel."


def clip(value, low, high):
    if value > high:
        return high
    if value < low:
        return low
    return value


def code_delta(index, code):
    """Signed delta a code contributes at the given step index."""
    step = STEP_TABLE[index]
    delta = step >> 3

    if code & 1: delta += (step >> 2)
    if code & 2: delta += (step >> 1)
    if code & 4: delta += step

    if code & 8:
        return -delta
    return delta


def transition(state, code):
    """
    Advances a state by one code.
    Returns the new state and the reconstructed sample (which equals the new
    state's predicted sample).
    """
    sample = clip(state.sample + code_delta(state.index, code), PCM_MIN, PCM_MAX)
    index = clip(state.index + INDEX_TABLE[code & 7], 0, MAX_INDEX)
    return AdpcmState(sample, index), sample


def step_index_for_delta(delta):
    """Smallest step index whose step is closest to an average sample delta."""
    for i in range(MAX_INDEX):
        if delta < (STEP_TABLE[i] + STEP_TABLE[i + 1]) // 2:
            return i
    return MAX_INDEX


def average_delta(samples):
    """
    Decaying average of absolute first differences, weighted towards the
    start of the run (the scan goes backwards).
    """
    avg = 0
    for i in range(len(samples) - 1, 0, -1):
        avg -= avg // 8
        avg += abs(int(samples[i]) - int(samples[i - 1]))
    return avg // 8


def pcm_list(samples):
    """Validated 16-bit PCM as a list of Python ints."""
    if samples is None:
        raise InvalidParamError("No PCM buffer given")

    values = np.asarray(samples)
    if values.size and not np.issubdtype(values.dtype, np.integer):
        raise InvalidParamError(f"PCM samples must be integers, got {values.dtype}")

    values = values.astype(np.int64).ravel()
    if values.size and (values.min() < PCM_MIN or values.max() > PCM_MAX):
        raise InvalidParamError("PCM samples outside 16-bit range")
    return values.tolist()


def init_encode(samples):
    """Seeds an encoder state from the first samples of a run."""
    samples = pcm_list(samples)
    if not samples:
        raise InvalidParamError("init_encode needs at least one seed sample")

    return AdpcmState(samples[0], step_index_for_delta(average_delta(samples)))


def init_decode(sample, index):
    """Seeds a decoder state; the index must be a valid step index."""
    if index is None or index < 0 or index > MAX_INDEX:
        raise InvalidParamError(f"Step index {index} outside [0, {MAX_INDEX}]")
    if sample is None or sample < PCM_MIN or sample > PCM_MAX:
        raise InvalidParamError(f"Seed sample {sample} outside 16-bit range")

    return AdpcmState(int(sample), int(index))
