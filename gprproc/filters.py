"""
Numeric primitives over radargrams.

Arrays are (samples, traces): axis 0 runs down each trace, axis 1 along the
profile. Every function returns a new array and leaves its input untouched.
"""
import numpy as np
import pandas as pd
from scipy.ndimage import uniform_filter1d

from .errors import ConfigurationError, PrimitiveError
from .tools import quantiles

ABSLOG_QUANTILES = (0.01, 0.05, 0.5, 0.9)
MAX_MIGRATION_APERTURE = 100


def _as_float(data):
    data = np.asarray(data)
    if np.issubdtype(data.dtype, np.floating):
        return data
    return data.astype(np.float64)


def abslog(data):
    data = np.abs(_as_float(data))
    if data.size == 0:
        return data
    subsampling = int(max(100, 0.1 * data.size))
    # NaNs drop out of the comparison
    values = data[data >= 0]
    floor = 1.0
    for quantile in ABSLOG_QUANTILES:
        candidate = quantiles(values, [quantile], subsampling)[0]
        if candidate != 0:
            floor = candidate
            break
    return np.log10(data + floor)


def siglog(data, floor_log10):
    data = _as_float(data)
    with np.errstate(divide="ignore"):
        magnitude = np.log10(np.abs(data)) - floor_log10
    return np.maximum(magnitude, 0.0) * np.sign(data)


def average_traces(data, window):
    window = int(window)
    if window <= 1:
        raise ConfigurationError(f"Window size ({window}) needs to be >= 2")
    data = _as_float(data)
    n_cols = data.shape[1]
    if window > n_cols:
        raise PrimitiveError(
            f"Averaging window ({window}) is larger than the data width ({n_cols})"
        )
    starts = np.arange(0, n_cols, window)
    counts = np.minimum(starts + window, n_cols) - starts
    sums = np.add.reduceat(data, starts, axis=1)
    return (sums / counts[None, :]).astype(data.dtype, copy=False)


def window_subset_indices(length, window):
    if window < 1:
        raise ValueError("window must be >= 1")
    if length == 0:
        return np.empty(0, dtype=np.int64)
    starts = np.arange(0, length, window)
    widths = np.minimum(starts + window, length) - starts
    # Left of centre for even widths
    return starts + (widths - 1) // 2


def window_subset_vec(sequence, window):
    indices = window_subset_indices(len(sequence), window)
    if isinstance(sequence, (pd.Series, pd.DataFrame)):
        return sequence.iloc[indices]
    if isinstance(sequence, np.ndarray):
        return sequence[indices]
    return [sequence[i] for i in indices]


def _bandpass_mask(freqs, low, high, taper):
    mask = np.zeros_like(freqs)
    passband = (freqs >= low) & (freqs <= high)
    mask[passband] = 1.0

    if taper > 0:
        low_start = max(low - taper, 0.0)
        low_taper = (freqs >= low_start) & (freqs < low)
        if np.any(low_taper):
            x = (freqs[low_taper] - low_start) / (low - low_start)
            mask[low_taper] = 0.5 * (1.0 - np.cos(np.pi * x))

        high_end = high + taper
        high_taper = (freqs > high) & (freqs <= high_end)
        if np.any(high_taper):
            x = (freqs[high_taper] - high) / (high_end - high)
            mask[high_taper] = 0.5 * (1.0 + np.cos(np.pi * x))
    return mask


def bandpass(data, low, high, sampling_frequency=1.0, taper=0.0):
    """
    Band-pass each trace in the frequency domain.

    ``low``, ``high`` and ``taper`` share the unit of ``sampling_frequency``
    (MHz for radargrams). Components outside ``[low - taper, high + taper]``
    are zeroed; the taper zones get a raised-cosine ramp.
    """
    if low < 0 or high <= low:
        raise ConfigurationError(
            f"Band-pass limits must satisfy 0 <= low < high (got {low}, {high})"
        )
    if taper < 0:
        raise ConfigurationError(f"Band-pass taper must be >= 0 (got {taper})")
    data = _as_float(data)
    if data.size == 0:
        return data.copy()
    n_samples = data.shape[0]
    freqs = np.fft.rfftfreq(n_samples, 1.0 / sampling_frequency)
    mask = _bandpass_mask(freqs, low, high, taper)
    spectrum = np.fft.rfft(data, axis=0)
    spectrum *= mask.reshape((-1,) + (1,) * (data.ndim - 1))
    return np.fft.irfft(spectrum, n=n_samples, axis=0).astype(data.dtype, copy=False)


def dewow(data, window=5):
    window = int(window)
    if window < 1:
        raise ConfigurationError(f"Dewow window ({window}) needs to be >= 1")
    data = _as_float(data)
    if data.size == 0:
        return data.copy()
    return data - uniform_filter1d(data, size=window, axis=0, mode="nearest")


def auto_gain(data, n_bins=100):
    n_bins = int(n_bins)
    if n_bins < 1:
        raise ConfigurationError(f"Number of gain bins ({n_bins}) needs to be >= 1")
    data = _as_float(data)
    n_rows = data.shape[0]
    if data.size == 0:
        return data.copy()
    n_bins = min(n_bins, n_rows)
    edges = np.linspace(0, n_rows, n_bins + 1).astype(int)

    centers = []
    stds = []
    for start, end in zip(edges[:-1], edges[1:]):
        if end <= start:
            continue
        centers.append((start + end - 1) / 2.0)
        stds.append(np.nanstd(data[start:end]))
    stds = np.asarray(stds)
    # Flat bins are left as they are
    stds[~np.isfinite(stds) | (stds == 0)] = 1.0

    gain = 1.0 / np.interp(np.arange(n_rows), centers, stds)
    return data * gain[:, None].astype(data.dtype, copy=False)


def normalize_horizontal_magnitudes(data, skip_first=0):
    skip_first = int(skip_first)
    if skip_first < 0:
        raise ConfigurationError(f"skip_first ({skip_first}) needs to be >= 0")
    data = _as_float(data).copy()
    if data.size == 0 or skip_first >= data.shape[0]:
        return data
    medians = np.median(data[skip_first:], axis=1)
    data[skip_first:] -= medians[:, None]
    return data


def analytic_magnitude(data):
    data = _as_float(data)
    n_samples = data.shape[0]
    if data.size == 0:
        return data.copy()
    spectrum = np.fft.fft(data, axis=0)
    phase_shift = np.empty_like(spectrum)
    pos_mask = np.arange(n_samples) <= (n_samples // 2 - 1)
    phase_shift[pos_mask] = spectrum[pos_mask] * np.exp(-1j * np.pi / 2.0)
    phase_shift[~pos_mask] = spectrum[~pos_mask] * np.exp(1j * np.pi / 2.0)
    hilbert = np.fft.ifft(phase_shift, axis=0).real
    return np.sqrt(data**2 + hilbert**2).astype(data.dtype, copy=False)


def power_db_max(data):
    power = analytic_magnitude(data)
    if power.size == 0:
        return power
    max_per_trace = np.max(power, axis=0)
    max_per_trace[max_per_trace == 0.0] = 1.0
    with np.errstate(divide="ignore"):
        return 10.0 * np.log10((power**2) / (max_per_trace**2))


def max_peak_row(data):
    data = _as_float(data)
    if data.size == 0:
        raise PrimitiveError("Cannot find a peak in empty data")
    mean_trace = np.nanmean(np.abs(data), axis=1)
    if not np.any(np.isfinite(mean_trace)):
        raise PrimitiveError("Cannot find a peak in data without finite values")
    return int(np.nanargmax(mean_trace))


def first_break_row(data, threshold_multiplier=1.0):
    data = _as_float(data)
    if data.size == 0:
        raise PrimitiveError("Cannot find a first break in empty data")
    mean_trace = np.nanmean(np.abs(data), axis=1)
    threshold = np.nanmedian(mean_trace) + threshold_multiplier * np.nanstd(mean_trace)
    above = np.flatnonzero(mean_trace > threshold)
    if above.size == 0:
        raise PrimitiveError(
            f"No first break found above the threshold ({threshold:.3g})"
        )
    return int(above[0])


def equidistant_traces(data, distances, step=None):
    """
    Resample traces onto a regular distance grid.

    Traces recorded at the same distance (standing still) are averaged, then
    each row is linearly interpolated along distance. The grid never holds
    more traces than the input: a finer step is widened to
    span / (n_traces - 1). Returns the new data, the index of the nearest
    original trace for every new trace, and the new distances.
    """
    data = _as_float(data)
    distances = np.asarray(distances, dtype=np.float64)
    if distances.shape[0] != data.shape[1]:
        raise PrimitiveError(
            f"Got {distances.shape[0]} distances for {data.shape[1]} traces"
        )
    if not np.all(np.isfinite(distances)):
        raise PrimitiveError("Trace distances contain non-finite values")

    order = np.argsort(distances, kind="stable")
    sorted_distances = distances[order]
    unique, first, counts = np.unique(
        sorted_distances, return_index=True, return_counts=True
    )
    averaged = np.add.reduceat(data[:, order], first, axis=1) / counts[None, :]

    if unique.size < 2:
        return averaged.astype(data.dtype, copy=False), order[first], unique

    if step is None:
        step = float(np.median(np.diff(unique)))
    if step <= 0:
        raise ConfigurationError(f"Trace spacing ({step}) needs to be > 0")

    grid = np.arange(unique[0], unique[-1] + step * 0.5, step)
    if grid.size > data.shape[1]:
        # Resampling never adds traces: widen the step to fit the trace count
        grid = np.linspace(unique[0], unique[-1], data.shape[1])
    pos = np.clip(np.searchsorted(unique, grid, side="right") - 1, 0, unique.size - 2)
    frac = np.clip((grid - unique[pos]) / (unique[pos + 1] - unique[pos]), 0.0, 1.0)
    resampled = averaged[:, pos] * (1.0 - frac) + averaged[:, pos + 1] * frac

    nearest = pos + (frac > 0.5)
    return resampled.astype(data.dtype, copy=False), order[first[nearest]], grid


def correct_antenna_separation(data, sample_interval_ns, separation, velocity):
    data = _as_float(data)
    n_rows = data.shape[0]
    if separation <= 0 or data.size == 0:
        return data.copy()

    depths = np.arange(n_rows) * sample_interval_ns * velocity / 2.0
    source_rows = 2.0 * np.sqrt(depths**2 + (separation / 2.0) ** 2) / velocity / sample_interval_ns
    lower = np.floor(source_rows).astype(int)
    frac = (source_rows - lower)[:, None]
    valid = lower + 1 < n_rows

    corrected = np.zeros_like(data)
    corrected[valid] = (
        data[lower[valid]] * (1.0 - frac[valid]) + data[lower[valid] + 1] * frac[valid]
    )
    return corrected


def kirchhoff_migration2d(data, sample_interval_ns, trace_spacing, velocity, aperture=None):
    """
    Diffraction-summation (Kirchhoff) migration with a constant velocity.

    Every output sample sums the input along its diffraction hyperbola over
    ``aperture`` neighbouring traces on each side, weighted by the obliquity
    factor z / r.
    """
    data = _as_float(data)
    n_rows, n_cols = data.shape
    if data.size == 0:
        return data.copy()
    if sample_interval_ns <= 0 or trace_spacing <= 0 or velocity <= 0:
        raise PrimitiveError(
            "Migration needs a positive sample interval, trace spacing and velocity"
        )

    depths = np.arange(n_rows) * sample_interval_ns * velocity / 2.0
    if aperture is None:
        aperture = min(MAX_MIGRATION_APERTURE, int(np.ceil(depths[-1] / trace_spacing)))
    aperture = max(0, min(int(aperture), n_cols - 1))

    rows = np.arange(n_rows)
    migrated = np.zeros_like(data)
    for offset in range(-aperture, aperture + 1):
        radius = np.sqrt(depths**2 + (offset * trace_spacing) ** 2)
        source_rows = np.rint(2.0 * radius / velocity / sample_interval_ns).astype(int)
        valid = source_rows < n_rows
        if not np.any(valid):
            continue
        with np.errstate(divide="ignore", invalid="ignore"):
            weights = np.where(radius > 0, depths / radius, 1.0)

        # Output trace j gathers from input trace j + offset
        if offset >= 0:
            out_cols = slice(0, n_cols - offset)
            in_cols = slice(offset, n_cols)
        else:
            out_cols = slice(-offset, n_cols)
            in_cols = slice(0, n_cols + offset)
        migrated[rows[valid], out_cols] += (
            data[source_rows[valid], in_cols] * weights[valid, None]
        )
    return migrated


def topographic_shift(data, elevations, depth_per_sample):
    data = _as_float(data)
    elevations = np.asarray(elevations, dtype=np.float64)
    n_rows, n_cols = data.shape
    if elevations.shape[0] != n_cols:
        raise PrimitiveError(f"Got {elevations.shape[0]} elevations for {n_cols} traces")
    if n_cols == 0:
        return data.copy()
    if not np.all(np.isfinite(elevations)):
        raise PrimitiveError("Elevations contain non-finite values")
    if depth_per_sample <= 0:
        raise PrimitiveError(f"Depth per sample ({depth_per_sample}) needs to be > 0")

    shifts = np.rint((elevations.max() - elevations) / depth_per_sample).astype(int)
    shifted = np.full((n_rows + shifts.max(), n_cols), np.nan, dtype=data.dtype)
    shifted[np.arange(n_rows)[:, None] + shifts[None, :], np.arange(n_cols)[None, :]] = data
    return shifted
