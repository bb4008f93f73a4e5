#!/usr/bin/env python3
"""
adpcm-xq: PCM WAV <-> IMA ADPCM WAV converter with lookahead encoding.

Usage:
    # Encode with a 3-sample lookahead (the default)
    python -m adpcmxq.xq input.wav output.wav

    # Deeper search, smaller blocks
    python -m adpcmxq.xq -l 5 -b 9 input.wav output.wav

    # Decode back to 16-bit PCM
    python -m adpcmxq.xq -d output.wav decoded.wav

The direction is inferred from the input's format tag unless -e/-d is given.
Lookahead cost grows roughly 16x per level in the worst case; 3-5 is usually
the useful range.
"""

import argparse
import logging
import math
import os
import sys
import time
import wave

import numpy as np

from .block import (
    DEFAULT_LOOKAHEAD, block_size_for, create_context, decode_block, encode_block,
    initial_deltas, samples_per_block_for,
)
from .lookahead import DEFAULT_METRIC, METRICS
from .wav import (
    WAVE_FORMAT_IMA_ADPCM, WAVE_FORMAT_PCM, read_adpcm_wav, read_format_tag,
    read_pcm_wav, write_adpcm_wav, write_pcm_wav,
)

MIN_BLOCK_SIZE_EXP = 8
MAX_BLOCK_SIZE_EXP = 15


def default_block_size(channels, rate):
    """256 bytes per channel, doubled per 11 kHz of rate, as a power of two."""
    size = 256 * channels * max(1, rate // 11000)
    exp = MIN_BLOCK_SIZE_EXP
    while exp < MAX_BLOCK_SIZE_EXP and (1 << (exp + 1)) <= size:
        exp += 1
    return 1 << exp


def encode_pcm(samples, channels, block_size, lookahead=DEFAULT_LOOKAHEAD, metric=DEFAULT_METRIC):
    """
    Splits interleaved PCM into IMA ADPCM blocks.
    The last block is padded by repeating the final frame.
    Returns (blocks, samples_per_block, total_samples).
    """
    if block_size < 8 * channels:
        raise ValueError(f"Block size {block_size} too small for {channels} channels")

    frames = np.asarray(samples, dtype=np.int16).reshape(-1, channels)
    total_samples = len(frames)
    if not total_samples:
        raise ValueError("No samples to encode")

    samples_per_block = samples_per_block_for(block_size, channels)
    block_count = -(-total_samples // samples_per_block)
    padding = block_count * samples_per_block - total_samples
    if padding:
        frames = np.concatenate([frames, np.repeat(frames[-1:], padding, axis=0)])

    context = create_context(channels, lookahead, initial_deltas(frames[:samples_per_block], channels), metric)

    blocks = []
    for b in range(block_count):
        block_frames = frames[b * samples_per_block:(b + 1) * samples_per_block]
        blocks.append(encode_block(context, block_frames, samples_per_block))

    return blocks, samples_per_block, total_samples


def decode_adpcm(info):
    """
    Decodes every block of an AdpcmWav. Corrupt blocks are skipped.
    Returns (interleaved samples, skipped block count).
    """
    parts = []
    skipped = 0
    for offset in range(0, len(info.data), info.block_size):
        decoded = decode_block(info.data[offset:offset + info.block_size], info.channels)
        if not len(decoded):
            skipped += 1
            continue
        parts.append(decoded)

    if not parts:
        return np.zeros(0, dtype=np.int16), skipped

    samples = np.concatenate(parts)
    return samples[:info.total_samples * info.channels], skipped


def rms_error(original, decoded):
    diff = np.asarray(original, dtype=np.float64) - np.asarray(decoded, dtype=np.float64)
    return math.sqrt(np.mean(diff * diff)) if len(diff) else 0.0


def encode_file(args):
    samples, channels, rate = read_pcm_wav(args.input)

    if args.block_size_exp is not None:
        block_size = 1 << args.block_size_exp
    else:
        block_size = default_block_size(channels, rate)
    block_size = block_size_for(samples_per_block_for(block_size, channels), channels)

    if not args.quiet:
        print(f"Encoding {args.input}: {channels} ch, {rate} Hz, {len(samples) // channels} samples, "
              f"block size {block_size}, lookahead {args.lookahead}")

    start = time.time()
    blocks, samples_per_block, total_samples = encode_pcm(
        samples, channels, block_size, args.lookahead, args.metric)
    write_adpcm_wav(args.output, blocks, channels, rate, block_size, samples_per_block, total_samples)

    if not args.quiet:
        decoded, _ = decode_adpcm(read_adpcm_wav(args.output))
        rms = rms_error(samples, decoded)
        db = 20 * math.log10(rms / 32768) if rms else float('-inf')
        print(f"Wrote {len(blocks)} blocks to {args.output} in {time.time() - start:.2f}s")
        print(f"RMS error: {rms:.2f} ({db:.2f} dB)")


def decode_file(args):
    info = read_adpcm_wav(args.input)

    if not args.quiet:
        print(f"Decoding {args.input}: {info.channels} ch, {info.rate} Hz, {info.total_samples} samples, "
              f"block size {info.block_size}")

    samples, skipped = decode_adpcm(info)
    write_pcm_wav(args.output, samples, info.channels, info.rate)

    if not args.quiet:
        if skipped:
            print(f"Skipped {skipped} corrupt blocks")
        print(f"Wrote {len(samples) // info.channels} samples to {args.output}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Lookahead IMA ADPCM encoder/decoder.")
    parser.add_argument("input", help="Input WAV (16-bit PCM to encode, IMA ADPCM to decode)")
    parser.add_argument("output", help="Output WAV")
    parser.add_argument("-l", "--lookahead", type=int, choices=range(0, 9), default=DEFAULT_LOOKAHEAD,
                        help=f"Lookahead depth 0-8 (default: {DEFAULT_LOOKAHEAD})")
    parser.add_argument("-b", "--block-size-exp", type=int,
                        choices=range(MIN_BLOCK_SIZE_EXP, MAX_BLOCK_SIZE_EXP + 1),
                        help="Block size as a power of two, 8-15 (default: from sample rate)")
    parser.add_argument("--metric", choices=sorted(METRICS), default=DEFAULT_METRIC,
                        help=f"Lookahead error metric (default: {DEFAULT_METRIC})")
    direction = parser.add_mutually_exclusive_group()
    direction.add_argument("-e", "--encode", action="store_true", help="Force encoding")
    direction.add_argument("-d", "--decode", action="store_true", help="Force decoding")
    parser.add_argument("-y", "--overwrite", action="store_true", help="Overwrite an existing output file")
    parser.add_argument("-q", "--quiet", action="store_true", help="No progress output")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    if args.verbose:
        logging.basicConfig(format="%(name)s: %(message)s", level=logging.DEBUG)

    if not os.path.exists(args.input):
        print(f"Error: Input file not found: {args.input}")
        sys.exit(1)
    if os.path.exists(args.output) and not args.overwrite:
        print(f"Error: {args.output} exists (use -y to overwrite)")
        sys.exit(1)

    try:
        if args.encode:
            encode_file(args)
        elif args.decode:
            decode_file(args)
        else:
            format_tag = read_format_tag(args.input)
            if format_tag == WAVE_FORMAT_PCM:
                encode_file(args)
            elif format_tag == WAVE_FORMAT_IMA_ADPCM:
                decode_file(args)
            else:
                print(f"Error: {args.input}: unsupported format tag {format_tag:#06x}")
                sys.exit(1)
    except (ValueError, OSError, EOFError, wave.Error) as e:
        print(f"Error processing {args.input}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
