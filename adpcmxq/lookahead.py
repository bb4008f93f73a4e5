"""
Lookahead quantizer.

Picks each 4-bit code by minimizing the error summed over the next `depth`
samples instead of the current sample alone. The search starts from the code
a greedy quantizer would choose, so its total is a good early bound, then
tries the other 15 codes, skipping any whose immediate error is already no
better than the best total found. With depth 0 it is the greedy quantizer.
"""

from .adpcm import STEP_TABLE, InvalidParamError, transition


def squared_error(diff):
    return diff * diff


def absolute_error(diff):
    return abs(diff)


METRICS = {
    'squared': squared_error,
    'absolute': absolute_error,
}

DEFAULT_METRIC = 'squared'


def get_metric(metric):
    """Resolves a metric name (or passes a callable through)."""
    if callable(metric):
        return metric
    try:
        return METRICS[metric]
    except KeyError:
        raise InvalidParamError(f"Unknown error metric: {metric!r}") from None


def greedy_code(state, target):
    """Code closest to the target for a single step."""
    delta = target - state.sample
    step = STEP_TABLE[state.index]

    if delta < 0:
        return 8 | min(7, (-delta << 2) // step)
    return min(7, (delta << 2) // step)


def minimum_error(state, window, depth, metric=squared_error, start=0):
    """
    Exact minimum of the error summed over window[start:start + depth + 1].

    window[start] is the sample to encode now, the rest are the samples that
    follow it; depth is clamped to what the window holds.
    Returns (best_code, immediate_error, total_error).
    """
    return _search(state, window, start, min(depth, len(window) - 1 - start), metric)


def _search(state, window, pos, depth, metric):
    target = window[pos]

    greedy = best_code = greedy_code(state, target)
    next_state, sample = transition(state, greedy)
    best_error = metric(sample - target)

    if depth == 0:
        return best_code, best_error, best_error

    best_total = best_error + _search(next_state, window, pos + 1, depth - 1, metric)[2]

    for code in range(16):
        if code == greedy:
            continue

        trial_state, sample = transition(state, code)
        error = metric(sample - target)

        # the rest of the horizon can only add to this
        if error >= best_total:
            continue

        total = error + _search(trial_state, window, pos + 1, depth - 1, metric)[2]
        if total < best_total:
            best_code, best_error, best_total = code, error, total

    return best_code, best_error, best_total


def choose_code(state, target, future=(), depth=0, metric=squared_error):
    """
    Chooses the code for `target` given the samples that follow it.
    Returns (code, immediate_error).
    """
    if depth < 0:
        raise InvalidParamError(f"Lookahead depth must not be negative: {depth}")

    window = [int(target)]
    window.extend(int(s) for s in future[:depth])
    code, error, _ = minimum_error(state, window, depth, get_metric(metric))
    return code, error
