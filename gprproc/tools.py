import math
import os
from pathlib import Path

import numpy as np
import pandas as pd

from .errors import ConfigurationError


def quantiles(values, qs, subsampling=None):
    values = np.asarray(values, dtype=np.float64).ravel()
    if values.size == 0:
        return np.zeros(len(qs))
    if subsampling is not None and values.size > subsampling:
        # Evenly strided subset, so the estimate is deterministic
        stride = int(math.ceil(values.size / subsampling))
        values = values[::stride]
    return np.quantile(values, qs)


def parse_duration(text):
    try:
        duration = pd.Timedelta(text)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(f"Error parsing duration string {text!r}: {exc}") from exc
    if pd.isna(duration) or duration < pd.Timedelta(0):
        raise ConfigurationError(f"Duration must be a non-negative time span, got {text!r}")
    return duration


def group_by_time(intervals, threshold_seconds):
    """
    Group (start, end) time intervals whose gaps are within the threshold.

    Intervals are visited in order of start time; one joins the running group
    when its start is at most ``threshold_seconds`` after the group's end.
    Returns lists of the original indices.
    """
    order = sorted(range(len(intervals)), key=lambda i: intervals[i][0])
    groups = []
    group_end = None
    for idx in order:
        start, end = intervals[idx]
        if groups and start - group_end <= threshold_seconds:
            groups[-1].append(idx)
            group_end = max(group_end, end)
        else:
            groups.append([idx])
            group_end = end
    return groups


def with_suffix(path, suffix):
    return Path(path).with_suffix(suffix)


def sibling_with_stem_suffix(path, stem_suffix, suffix):
    path = Path(path)
    return path.with_name(f"{path.stem}{stem_suffix}{suffix}")


def ensure_parent(path):
    parent = Path(path).parent
    if str(parent):
        os.makedirs(parent, exist_ok=True)
