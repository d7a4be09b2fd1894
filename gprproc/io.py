"""
Reading and writing radargrams.

Input is either a Malå RAMAC dataset (``.rad`` header, ``.rd3``/``.rd7``
samples, optional ``.cor`` coordinates) or a netCDF file written by
:func:`export_netcdf`.
"""
import logging
import math
import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import xarray as xr

from .errors import ExportError, LoadError
from .gpr import DEFAULT_VELOCITY, GPR, GPRMeta, TraceMetadata
from .tools import ensure_parent

logger = logging.getLogger(__name__)

RAMAC_SUFFIXES = (".rad", ".rd3", ".rd7", ".cor")
NETCDF_SUFFIXES = (".nc",)
NETCDF_REQUIRED_ATTRS = ("samples", "frequency", "time_window")
RAMAC_DTYPES = {".rd3": "<i2", ".rd7": "<i4"}
TRACK_COLUMNS = ["trace_n", "time", "longitude", "latitude", "x", "y", "z", "distance"]

# pyplot keeps global state; units may render from worker threads
_PLOT_LOCK = threading.Lock()


def dataset_path(path):
    """Map any member of a RAMAC file set to its header; other files pass through."""
    path = Path(path)
    if path.suffix.lower() in RAMAC_SUFFIXES:
        return path.with_suffix(".rad")
    return path


def is_loadable(path):
    return Path(path).suffix.lower() in RAMAC_SUFFIXES + NETCDF_SUFFIXES


def load(path, cor_path=None, medium_velocity=DEFAULT_VELOCITY):
    path = dataset_path(path)
    if path.suffix.lower() in NETCDF_SUFFIXES:
        return load_netcdf(path, medium_velocity=medium_velocity)
    return load_ramac(path, cor_path=cor_path, medium_velocity=medium_velocity)


# RAMAC


def _header_number(header, key, kind=float, default=None):
    value = header.get(key, "")
    match = re.search(r"[-+]?\d*\.?\d+(?:[eE][-+]?\d+)?", value)
    if match is None:
        if default is None:
            raise LoadError(f"Header key {key!r} is missing or not numeric")
        return default
    return kind(float(match.group(0)))


def read_rad_header(path):
    header = {}
    try:
        with open(path, "r", encoding="ascii", errors="ignore") as handle:
            for row in handle:
                if ":" not in row:
                    continue
                key, value = row.split(":", 1)
                header[key.strip().upper()] = value.strip()
    except OSError as exc:
        raise LoadError(f"Could not read header {path}: {exc}") from exc

    samples = _header_number(header, "SAMPLES", int)
    frequency = _header_number(header, "FREQUENCY")
    if samples <= 0 or frequency <= 0:
        raise LoadError(f"Header {path} has invalid SAMPLES or FREQUENCY")
    return GPRMeta(
        samples=samples,
        frequency=frequency,
        time_window=_header_number(header, "TIMEWINDOW", default=samples * 1000.0 / frequency),
        antenna=header.get("ANTENNAS", ""),
        antenna_mhz=_header_number(header, "ANTENNAS", default=math.nan),
        antenna_separation=_header_number(header, "ANTENNA SEPARATION", default=0.0),
        frequency_steps=_header_number(header, "FREQUENCY STEPS", int, default=0),
        time_interval=_header_number(header, "TIME INTERVAL", default=0.0),
        last_trace=_header_number(header, "LAST TRACE", int, default=0),
        distance_interval=_header_number(header, "DISTANCE INTERVAL", default=0.0),
        filepath=str(path),
    )


def read_ramac_data(path, samples):
    path = Path(path)
    try:
        raw = np.fromfile(path, dtype=RAMAC_DTYPES[path.suffix.lower()])
    except OSError as exc:
        raise LoadError(f"Could not read data file {path}: {exc}") from exc
    if raw.size == 0 or raw.size % samples != 0:
        raise LoadError(
            f"Data file {path} holds {raw.size} values, not a multiple of {samples} samples"
        )
    return raw.reshape(-1, samples).T.astype(np.float32)


def read_cor(path):
    """Parse a RAMAC coordinate file into a table keyed by 1-based trace number."""
    records = []
    try:
        with open(path, "r", encoding="ascii", errors="ignore") as handle:
            for line_n, row in enumerate(handle, start=1):
                parts = row.split()
                if len(parts) < 8:
                    continue
                try:
                    lat = float(parts[3]) * (-1.0 if parts[4].upper() == "S" else 1.0)
                    lon = float(parts[5]) * (-1.0 if parts[6].upper() == "W" else 1.0)
                    records.append(
                        {
                            "trace_n": int(parts[0]),
                            "time": pd.Timestamp(f"{parts[1]} {parts[2]}", tz="UTC").timestamp(),
                            "latitude": lat,
                            "longitude": lon,
                            "altitude": float(parts[7]),
                        }
                    )
                except ValueError as exc:
                    raise LoadError(f"Malformed line {line_n} in {path}: {exc}") from exc
    except OSError as exc:
        raise LoadError(f"Could not read coordinate file {path}: {exc}") from exc
    return pd.DataFrame.from_records(
        records, columns=["trace_n", "time", "latitude", "longitude", "altitude"]
    )


def load_ramac(header_path, cor_path=None, medium_velocity=DEFAULT_VELOCITY):
    header_path = Path(header_path)
    if not header_path.is_file():
        raise LoadError(f"Header file not found: {header_path}")
    metadata = read_rad_header(header_path)

    data_path = None
    for suffix in RAMAC_DTYPES:
        candidate = header_path.with_suffix(suffix)
        if candidate.is_file():
            data_path = candidate
            break
    if data_path is None:
        raise LoadError(f"No .rd3 or .rd7 file found next to {header_path}")
    data = read_ramac_data(data_path, metadata.samples)
    n_traces = data.shape[1]

    start_time = os.path.getmtime(data_path)
    traces = TraceMetadata.regular(
        n_traces, start_time, metadata.time_interval, metadata.antenna_mhz
    )

    cor_path = Path(cor_path) if cor_path is not None else header_path.with_suffix(".cor")
    if cor_path.is_file():
        cor = read_cor(cor_path)
        cor = cor[(cor["trace_n"] >= 1) & (cor["trace_n"] <= n_traces)]
        cor = cor.drop_duplicates("trace_n", keep="last")
        # The trace table has a RangeIndex, so labels are column positions
        indices = cor["trace_n"].to_numpy() - 1
        for column in ("time", "latitude", "longitude", "altitude"):
            traces.frame[column] = traces.frame[column].astype(np.float64)
            traces.frame.loc[indices, column] = cor[column].to_numpy(dtype=np.float64)
        # The GNSS altitude is the starting guess for the surface elevation
        traces.frame["z"] = traces.frame["altitude"]
        logger.info("Read %d positions from %s", len(cor), cor_path)
    else:
        logger.info("No coordinate file for %s", header_path)

    metadata.last_trace = n_traces
    return GPR(
        data,
        metadata,
        traces,
        medium_velocity=medium_velocity,
        name=header_path.stem,
    )


# netCDF


def load_netcdf(path, medium_velocity=DEFAULT_VELOCITY):
    path = Path(path)
    try:
        with xr.open_dataset(path) as dataset:
            dataset = dataset.load()
    except (OSError, ValueError) as exc:
        raise LoadError(f"Could not read netCDF file {path}: {exc}") from exc
    if "data" not in dataset or dataset["data"].ndim != 2:
        raise LoadError(f"{path} has no 2D 'data' variable")

    attrs = dataset.attrs
    missing = [key for key in NETCDF_REQUIRED_ATTRS if key not in attrs]
    if missing:
        raise LoadError(f"{path} is not a gprproc export (missing attributes: {', '.join(missing)})")
    frame = pd.DataFrame(
        {
            column: dataset[column].to_numpy()
            for column in TraceMetadata.columns()
            if column in dataset.variables
        }
    )
    log = [line for line in str(attrs.get("processing_log", "")).splitlines() if line]
    return GPR(
        dataset["data"].to_numpy(),
        GPRMeta.from_attrs(attrs),
        TraceMetadata(frame),
        medium_velocity=float(attrs.get("medium_velocity", medium_velocity)),
        zero_point_ns=float(attrs.get("zero_point_ns", 0.0)),
        topo_corrected=bool(int(attrs.get("topo_corrected", 0))),
        elevation_top=float(attrs.get("elevation_top", math.nan)),
        crs=str(attrs.get("crs", "")),
        log=log,
        name=path.stem,
    )


def to_dataset(gpr):
    vertical_name, vertical_values = gpr.vertical_coordinate()
    coords = {vertical_name: ("sample", vertical_values)}
    for column in TraceMetadata.columns():
        coords[column] = ("trace", gpr.traces[column])

    attrs = gpr.metadata.to_attrs()
    attrs.update(
        {
            "medium_velocity": float(gpr.medium_velocity),
            "zero_point_ns": float(gpr.zero_point_ns),
            "topo_corrected": int(gpr.topo_corrected),
            "elevation_top": float(gpr.elevation_top),
            "crs": gpr.crs,
            "processing_log": "\n".join(gpr.log),
            "processing_datetime": datetime.now(timezone.utc).isoformat(),
        }
    )
    dataset = xr.Dataset({"data": (("sample", "trace"), gpr.data)}, coords=coords, attrs=attrs)
    dataset["time"].attrs["description"] = "UNIX time of the trace in seconds"
    dataset[vertical_name].attrs["units"] = "m"
    return dataset


def _write_atomic(path, write, what):
    """
    Call ``write`` with a temporary sibling of ``path``, then move it into place.

    The temporary name keeps the suffix so that writers choosing the format
    from it (matplotlib) still work. On failure nothing is left behind and an
    existing ``path`` is untouched.
    """
    path = Path(path)
    tmp_path = path.with_name(f".{path.stem}.tmp{path.suffix}")
    try:
        ensure_parent(path)
        write(tmp_path)
        os.replace(tmp_path, path)
    except Exception as exc:
        if tmp_path.exists():
            tmp_path.unlink()
        raise ExportError(f"Could not write {what} {path}: {exc}") from exc
    return path


def export_netcdf(gpr, path):
    path = _write_atomic(path, lambda target: to_dataset(gpr).to_netcdf(target), "netCDF")
    logger.info("Exported %s", path)
    return path


# Render & track


def render(gpr, path, dpi=200):
    path = Path(path)
    data = gpr.data
    finite = data[np.isfinite(data)]
    if finite.size == 0:
        raise ExportError(f"Nothing to render for {gpr.name}: no finite values")

    vmax = np.percentile(np.abs(finite), 99) or 1.0
    if finite.min() < 0:
        cmap, vmin = "seismic", -vmax
    else:
        cmap, vmin = "gray_r", np.percentile(finite, 1)

    distances = gpr.traces["distance"].astype(np.float64)
    if distances.size and np.all(np.isfinite(distances)):
        x0, x1, xlabel = distances[0], distances[-1], "Distance (m)"
    else:
        x0, x1, xlabel = 0, max(gpr.n_traces - 1, 1), "Trace number"

    vertical_name, vertical = gpr.vertical_coordinate()
    ylabel = "Elevation (m)" if vertical_name == "elevation" else "Depth (m)"

    def draw(target):
        with _PLOT_LOCK:
            fig, ax = plt.subplots(figsize=(12, 6))
            try:
                ax.imshow(
                    data,
                    cmap=cmap,
                    aspect="auto",
                    vmin=vmin,
                    vmax=vmax,
                    extent=(x0, x1, vertical[-1], vertical[0]),
                    interpolation="nearest",
                )
                ax.set_title(gpr.name, fontsize=11)
                ax.set_xlabel(xlabel)
                ax.set_ylabel(ylabel)
                fig.tight_layout()
                fig.savefig(target, dpi=dpi)
            finally:
                plt.close(fig)

    _write_atomic(path, draw, "image")
    logger.info("Rendered %s", path)
    return path


def export_track(gpr, path):
    track = gpr.traces.frame[TRACK_COLUMNS]
    path = _write_atomic(path, lambda target: track.to_csv(target, index=False), "track")
    logger.info("Exported track %s", path)
    return path


# Info


def _format_time(timestamp):
    if not math.isfinite(timestamp):
        return "unknown"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_info(gpr):
    meta = gpr.metadata
    start, end = gpr.traces.time_range()
    lines = [
        f"File: {meta.filepath or gpr.name}",
        f"Samples: {gpr.n_samples}",
        f"Traces: {gpr.n_traces}",
        f"Sampling frequency: {meta.frequency:g} MHz ({meta.sample_interval_ns:.4g} ns per sample)",
        f"Time window: {meta.time_window:g} ns",
        f"Antenna: {meta.antenna or 'unknown'} ({meta.antenna_mhz:g} MHz, separation {meta.antenna_separation:g} m)",
        f"Trace interval: {meta.time_interval:g} s",
        f"Start time: {_format_time(start)}",
        f"End time: {_format_time(end)}",
        f"Duration: {end - start:.1f} s" if math.isfinite(end - start) else "Duration: unknown",
        f"Positions: {'yes' if gpr.traces.has_lonlat or gpr.traces.has_positions else 'no'}",
        f"Elevation: {'yes' if gpr.traces.has_elevation else 'no'}",
    ]
    if gpr.log:
        lines.append(f"Processing log: {', '.join(gpr.log)}")
    return "\n".join(lines)
