"""
WAV containers: 16-bit PCM (through the wave module) and IMA ADPCM
(WAVE_FORMAT_IMA_ADPCM, packed by hand since wave only handles PCM).

IMA ADPCM layout:
  RIFF 'WAVE'
    'fmt '  20 bytes: format 0x0011, channels, rate, avg bytes/sec,
            block align (block size), bits per sample (4), cbSize (2),
            samples per block
    'fact'  4 bytes: samples per channel
    'data'  the blocks, each block_align bytes (the last may be shorter)
"""

import os
import wave
from collections import namedtuple

import numpy as np

from .common.riff import parse_riff, pu16, pu32, read_u16_le, read_u32_le, riff_chunk, riff_file

WAVE_FORMAT_PCM = 0x0001
WAVE_FORMAT_IMA_ADPCM = 0x0011

AdpcmWav = namedtuple('AdpcmWav', [
    'channels', 'rate', 'block_size', 'samples_per_block', 'total_samples', 'data',
])


def read_format_tag(path):
    with open(path, 'rb') as f:
        chunks = parse_riff(f.read(), 'WAVE')
    if 'fmt ' not in chunks or len(chunks['fmt ']) < 2:
        raise ValueError(f"{path}: missing 'fmt ' chunk")
    return read_u16_le(chunks['fmt '])


def read_pcm_wav(path):
    """Returns (interleaved int16 samples, channels, rate)."""
    with wave.open(path, 'rb') as wav_file:
        if wav_file.getsampwidth() != 2:
            raise ValueError(f"{path}: only 16-bit PCM is supported, got {wav_file.getsampwidth() * 8}-bit")
        channels = wav_file.getnchannels()
        rate = wav_file.getframerate()
        frames = wav_file.readframes(wav_file.getnframes())

    samples = np.frombuffer(frames, dtype='<i2').astype(np.int16)
    return samples, channels, rate


def write_pcm_wav(path, samples, channels, rate):
    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)

    with wave.open(path, 'wb') as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(2)
        wav_file.setframerate(rate)
        wav_file.writeframes(np.asarray(samples, dtype='<i2').tobytes())


def write_adpcm_wav(path, blocks, channels, rate, block_size, samples_per_block, total_samples):
    data = b''.join(blocks)

    fmt = b''.join([
        pu16(WAVE_FORMAT_IMA_ADPCM),
        pu16(channels),
        pu32(rate),
        pu32(rate * block_size // samples_per_block),
        pu16(block_size),
        pu16(4),
        pu16(2),
        pu16(samples_per_block),
    ])

    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)

    with open(path, 'wb') as f:
        f.write(riff_file('WAVE', [
            riff_chunk('fmt ', fmt),
            riff_chunk('fact', pu32(total_samples)),
            riff_chunk('data', data),
        ]))


def read_adpcm_wav(path):
    with open(path, 'rb') as f:
        chunks = parse_riff(f.read(), 'WAVE')

    fmt = chunks.get('fmt ')
    if fmt is None or len(fmt) < 20:
        raise ValueError(f"{path}: missing or short 'fmt ' chunk")
    if 'data' not in chunks:
        raise ValueError(f"{path}: missing 'data' chunk")

    format_tag = read_u16_le(fmt, 0)
    if format_tag != WAVE_FORMAT_IMA_ADPCM:
        raise ValueError(f"{path}: not IMA ADPCM (format tag {format_tag:#06x})")
    if read_u16_le(fmt, 14) != 4:
        raise ValueError(f"{path}: IMA ADPCM must be 4 bits per sample")

    channels = read_u16_le(fmt, 2)
    rate = read_u32_le(fmt, 4)
    block_size = read_u16_le(fmt, 12)
    samples_per_block = read_u16_le(fmt, 18)
    if not channels or not block_size or not samples_per_block:
        raise ValueError(f"{path}: bad IMA ADPCM format chunk")

    data = chunks['data']
    if 'fact' in chunks and len(chunks['fact']) >= 4:
        total_samples = read_u32_le(chunks['fact'])
    else:
        # no fact chunk: assume every block is full
        blocks = -(-len(data) // block_size)
        total_samples = blocks * samples_per_block

    return AdpcmWav(channels, rate, block_size, samples_per_block, total_samples, data)
