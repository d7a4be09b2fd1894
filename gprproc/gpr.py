"""
The GPR working unit: a radargram, its file metadata and its per-trace table.

Each processing step is a method named after its registry entry. Steps hand
the current array to a primitive in :mod:`gprproc.filters` and keep the
array it returns, so ``data`` is never aliased between steps.
"""
import dataclasses
import logging
import math
from dataclasses import dataclass

import numpy as np
import pandas as pd

from . import filters
from .errors import LoadError, PrimitiveError

logger = logging.getLogger(__name__)

DEFAULT_VELOCITY = 0.168  # m/ns, ice

TRACE_COLUMNS = (
    "trace_n",
    "time",
    "longitude",
    "latitude",
    "altitude",
    "x",
    "y",
    "z",
    "distance",
    "antenna_mhz",
)


@dataclass
class GPRMeta:
    samples: int
    frequency: float  # sampling frequency, MHz
    time_window: float  # ns
    antenna: str = ""
    antenna_mhz: float = math.nan
    antenna_separation: float = 0.0  # m
    frequency_steps: int = 0
    time_interval: float = 0.0  # s between traces
    last_trace: int = 0
    distance_interval: float = 0.0  # m
    filepath: str = ""

    @property
    def sample_interval_ns(self):
        return 1000.0 / self.frequency

    def to_attrs(self):
        return {field.name: getattr(self, field.name) for field in dataclasses.fields(self)}

    @classmethod
    def from_attrs(cls, attrs):
        kwargs = {}
        for field in dataclasses.fields(cls):
            if field.name not in attrs:
                continue
            caster = {int: int, float: float, str: str}.get(field.type, lambda v: v)
            kwargs[field.name] = caster(attrs[field.name])
        return cls(**kwargs)


class TraceMetadata:
    """Per-trace table, one row per radargram column in the same order."""

    def __init__(self, frame):
        frame = frame.reset_index(drop=True).copy()
        for column in TRACE_COLUMNS:
            if column not in frame.columns:
                frame[column] = np.nan
        self.frame = frame[list(TRACE_COLUMNS)].copy()

    @classmethod
    def regular(cls, n_traces, start_time=0.0, time_interval=0.0, antenna_mhz=math.nan):
        return cls(
            pd.DataFrame(
                {
                    "trace_n": np.arange(1, n_traces + 1),
                    "time": start_time + np.arange(n_traces) * time_interval,
                    "antenna_mhz": np.full(n_traces, antenna_mhz, dtype=np.float64),
                }
            )
        )

    @classmethod
    def concat(cls, items):
        return cls(pd.concat([item.frame for item in items], ignore_index=True))

    @staticmethod
    def columns():
        return list(TRACE_COLUMNS)

    def __len__(self):
        return len(self.frame)

    def __getitem__(self, column):
        return self.frame[column].to_numpy()

    def take(self, indices):
        return TraceMetadata(self.frame.iloc[np.asarray(indices)])

    def _all_finite(self, *columns):
        if len(self.frame) == 0:
            return False
        values = self.frame.loc[:, list(columns)].to_numpy(dtype=np.float64)
        return bool(np.all(np.isfinite(values)))

    @property
    def has_lonlat(self):
        return self._all_finite("longitude", "latitude")

    @property
    def has_positions(self):
        return self._all_finite("x", "y")

    @property
    def has_elevation(self):
        return self._all_finite("z")

    def time_range(self):
        times = self.frame["time"].to_numpy(dtype=np.float64)
        if not np.any(np.isfinite(times)):
            return (math.nan, math.nan)
        return (float(np.nanmin(times)), float(np.nanmax(times)))

    def update_distance(self):
        if not self.has_positions:
            return
        x = self.frame["x"].to_numpy(dtype=np.float64)
        y = self.frame["y"].to_numpy(dtype=np.float64)
        steps = np.sqrt(np.diff(x) ** 2 + np.diff(y) ** 2)
        self.frame["distance"] = np.concatenate([[0.0], np.cumsum(steps)])


class GPR:
    def __init__(
        self,
        data,
        metadata,
        traces,
        medium_velocity=DEFAULT_VELOCITY,
        zero_point_ns=0.0,
        topo_corrected=False,
        elevation_top=math.nan,
        crs="",
        log=None,
        name=None,
    ):
        self.data = np.asarray(data)
        if self.data.ndim != 2:
            raise LoadError(f"Radar data must be 2D, got shape {self.data.shape}")
        self.metadata = metadata
        self.traces = traces
        self.medium_velocity = medium_velocity
        self.zero_point_ns = zero_point_ns
        self.topo_corrected = topo_corrected
        self.elevation_top = elevation_top
        self.crs = crs
        self.log = list(log or [])
        self.name = name or metadata.filepath
        self._check_alignment()

    def __repr__(self):
        return (
            f"GPR(name={self.name!r}, samples={self.n_samples}, traces={self.n_traces}, "
            f"steps={len(self.log)})"
        )

    @property
    def n_samples(self):
        return self.data.shape[0]

    @property
    def n_traces(self):
        return self.data.shape[1]

    def _check_alignment(self):
        if len(self.traces) != self.n_traces:
            raise PrimitiveError(
                f"Trace metadata ({len(self.traces)}) out of step with data width ({self.n_traces})"
            )

    def _set_rows(self, data, first_row=0):
        self.data = data
        self.zero_point_ns += first_row * self.metadata.sample_interval_ns
        self.metadata = dataclasses.replace(
            self.metadata,
            samples=data.shape[0],
            time_window=data.shape[0] * self.metadata.sample_interval_ns,
        )

    def _set_traces(self, data, traces):
        self.data = data
        self.traces = traces
        self.metadata = dataclasses.replace(self.metadata, last_trace=data.shape[1])

    def depth_per_sample(self):
        return self.metadata.sample_interval_ns * self.medium_velocity / 2.0

    def depths(self):
        return np.arange(self.n_samples) * self.depth_per_sample()

    def vertical_coordinate(self):
        if self.topo_corrected:
            return "elevation", self.elevation_top - self.depths()
        return "depth", self.depths()

    def horizontal_spacing(self):
        distances = self.traces["distance"].astype(np.float64)
        if distances.size > 1 and np.all(np.isfinite(distances)):
            spacing = float(np.median(np.abs(np.diff(distances))))
            if spacing > 0:
                return spacing
        if self.metadata.distance_interval > 0:
            return float(self.metadata.distance_interval)
        raise PrimitiveError(
            "Trace spacing is unknown: no coordinates and no distance interval in the header"
        )

    def override_antenna_mhz(self, antenna_mhz):
        self.metadata = dataclasses.replace(self.metadata, antenna_mhz=float(antenna_mhz))
        self.traces.frame["antenna_mhz"] = float(antenna_mhz)

    # Step application

    def apply_steps(self, steps):
        for step in steps:
            self.apply_step(step)

    def apply_step(self, step):
        method = getattr(self, step.name.value)
        method(*step.numeric_params())
        self._check_alignment()
        self.log.append(step.token)
        logger.info(
            "%s: applied %s (%d samples x %d traces)",
            self.name, step.token, self.n_samples, self.n_traces,
        )

    # Steps

    def subset(self, min_trace, max_trace, min_sample=None, max_sample=None):
        max_trace = min(max_trace, self.n_traces)
        if min_trace < 0 or min_trace >= max_trace:
            raise PrimitiveError(
                f"Invalid trace range {min_trace}-{max_trace} for {self.n_traces} traces"
            )
        self._set_traces(
            self.data[:, min_trace:max_trace].copy(),
            self.traces.take(np.arange(min_trace, max_trace)),
        )
        if min_sample is None:
            return
        max_sample = min(max_sample, self.n_samples)
        if min_sample < 0 or min_sample >= max_sample:
            raise PrimitiveError(
                f"Invalid sample range {min_sample}-{max_sample} for {self.n_samples} samples"
            )
        self._set_rows(self.data[min_sample:max_sample].copy(), first_row=min_sample)

    def remove_empty_traces(self):
        if self.n_samples == 0:
            return
        keep = np.flatnonzero(np.any(self.data != self.data[:1], axis=0))
        if keep.size == 0:
            raise PrimitiveError("All traces are empty")
        removed = self.n_traces - keep.size
        if removed:
            logger.info("%s: removing %d empty traces", self.name, removed)
            self._set_traces(self.data[:, keep], self.traces.take(keep))

    def zero_corr_max_peak(self):
        row = filters.max_peak_row(self.data)
        self._set_rows(self.data[row:].copy(), first_row=row)

    def zero_corr(self, threshold_multiplier=1.0):
        row = filters.first_break_row(self.data, threshold_multiplier)
        self._set_rows(self.data[row:].copy(), first_row=row)

    def equidistant_traces(self, step=None):
        if not self.traces.has_positions:
            logger.warning("%s: no trace positions, skipping equidistant_traces", self.name)
            return
        self.traces.update_distance()
        data, indices, distances = filters.equidistant_traces(
            self.data, self.traces["distance"], step
        )
        traces = self.traces.take(indices)
        traces.frame["distance"] = distances
        self._set_traces(data, traces)

    def correct_antenna_separation(self):
        self.data = filters.correct_antenna_separation(
            self.data,
            self.metadata.sample_interval_ns,
            self.metadata.antenna_separation,
            self.medium_velocity,
        )

    def normalize_horizontal_magnitudes(self, skip_first=0):
        self.data = filters.normalize_horizontal_magnitudes(self.data, skip_first)

    def dewow(self, window=5):
        self.data = filters.dewow(self.data, window)

    def bandpass(self, low, high):
        self.data = filters.bandpass(
            self.data,
            low,
            high,
            sampling_frequency=self.metadata.frequency,
            taper=0.1 * (high - low),
        )

    def auto_gain(self, n_bins=100):
        self.data = filters.auto_gain(self.data, n_bins)

    def kirchhoff_migration2d(self, aperture=None):
        self.data = filters.kirchhoff_migration2d(
            self.data,
            self.metadata.sample_interval_ns,
            self.horizontal_spacing(),
            self.medium_velocity,
            aperture,
        )

    def envelope(self):
        self.data = filters.analytic_magnitude(self.data)

    def power_db(self):
        self.data = filters.power_db_max(self.data)

    def abslog(self):
        self.data = filters.abslog(self.data)

    def siglog(self, floor_log10=1.0):
        self.data = filters.siglog(self.data, floor_log10)

    def average_traces(self, window):
        data = filters.average_traces(self.data, window)
        self._set_traces(
            data, self.traces.take(filters.window_subset_indices(self.n_traces, window))
        )

    def correct_topography(self):
        if not self.traces.has_elevation:
            raise PrimitiveError(
                "Topographic correction needs an elevation for every trace (use a coordinate file or a DEM)"
            )
        elevations = self.traces["z"].astype(np.float64)
        self.data = filters.topographic_shift(self.data, elevations, self.depth_per_sample())
        self.metadata = dataclasses.replace(self.metadata, samples=self.n_samples)
        self.elevation_top = float(elevations.max())
        self.topo_corrected = True


def merge_profiles(profiles):
    """Join profiles side by side, in the given order."""
    if len(profiles) == 1:
        return profiles[0]
    first = profiles[0]
    for other in profiles[1:]:
        if other.n_samples != first.n_samples:
            raise LoadError(
                f"Cannot merge {other.name} ({other.n_samples} samples) with "
                f"{first.name} ({first.n_samples} samples)"
            )
        if not math.isclose(other.metadata.frequency, first.metadata.frequency):
            raise LoadError(
                f"Cannot merge {other.name} and {first.name}: sampling frequencies differ"
            )
    data = np.concatenate([profile.data for profile in profiles], axis=1)
    traces = TraceMetadata.concat([profile.traces for profile in profiles])
    logger.info(
        "Merged %s into %s (%d traces)",
        ", ".join(profile.name for profile in profiles[1:]), first.name, data.shape[1],
    )
    return GPR(
        data,
        dataclasses.replace(first.metadata, last_trace=data.shape[1]),
        traces,
        medium_velocity=first.medium_velocity,
        zero_point_ns=first.zero_point_ns,
        crs=first.crs,
        log=first.log,
        name=first.name,
    )
