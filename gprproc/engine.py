"""
Run a processing profile over one or many files.

For every unit (a file, or a group of files merged by acquisition time) the
engine loads, applies geo/antenna corrections, runs the steps and writes the
requested outputs. Errors inside one unit are logged and recorded; the other
units still run.
"""
import glob
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from . import coords, dem, io
from .errors import ExportError, FileResolutionError, GPRError, LoadError
from .gpr import DEFAULT_VELOCITY, merge_profiles
from .steps import ProcessingStep
from .tools import group_by_time, sibling_with_stem_suffix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunParams:
    filepaths: Tuple[Path, ...]
    output_path: Optional[Path] = None
    only_info: bool = False
    dem_path: Optional[Path] = None
    cor_path: Optional[Path] = None
    medium_velocity: float = DEFAULT_VELOCITY
    crs: Optional[str] = None
    # None: no track. "": default path. Otherwise the path.
    track_path: Optional[str] = None
    steps: Tuple[ProcessingStep, ...] = ()
    no_export: bool = False
    # Same convention as track_path
    render_path: Optional[str] = None
    merge: Optional[pd.Timedelta] = None
    override_antenna_mhz: Optional[float] = None
    jobs: int = 1


@dataclass
class UnitResult:
    name: str
    success: bool
    error: Optional[str] = None
    outputs: List[Path] = field(default_factory=list)


def resolve_filepaths(pattern):
    """Expand a path or glob pattern to one path per dataset, sorted."""
    if pattern is None or not str(pattern).strip():
        raise FileResolutionError("No filepath given")
    matches = [pattern] if Path(pattern).is_file() else glob.glob(str(pattern))

    paths = []
    for match in sorted(matches):
        if not io.is_loadable(match):
            continue
        path = io.dataset_path(match)
        if path not in paths:
            paths.append(path)
    if not paths:
        raise FileResolutionError(f"No loadable files match {pattern!r}")
    return paths


def output_path_for(input_path, output_path, n_units):
    input_path = Path(input_path)
    default_name = input_path.with_suffix(".nc").name
    if output_path is None:
        if input_path.suffix.lower() == ".nc":
            return input_path.with_name(f"{input_path.stem}_processed.nc")
        return input_path.with_suffix(".nc")
    output_path = Path(output_path)
    if output_path.is_dir() or n_units > 1:
        return output_path / default_name
    return output_path


def _optional_path(value, default):
    if value is None:
        return None
    if value == "":
        return default
    return Path(value)


def apply_corrections(gpr, params):
    if params.override_antenna_mhz is not None:
        gpr.override_antenna_mhz(params.override_antenna_mhz)

    traces = gpr.traces
    if traces.has_lonlat and (params.crs or not traces.has_positions):
        lon = traces["longitude"].astype(np.float64)
        lat = traces["latitude"].astype(np.float64)
        crs = params.crs or coords.utm_crs_for(float(np.mean(lon)), float(np.mean(lat)))
        x, y = coords.project(lon, lat, crs)
        traces.frame["x"] = x
        traces.frame["y"] = y
        gpr.crs = str(crs)
        logger.info("%s: projected coordinates to %s", gpr.name, crs)

    if params.dem_path is not None:
        if not traces.has_lonlat:
            raise LoadError(f"{gpr.name}: DEM correction needs coordinates for every trace")
        traces.frame["z"] = dem.elevation_at(
            params.dem_path,
            traces["longitude"].astype(np.float64),
            traces["latitude"].astype(np.float64),
        )
        logger.info("%s: sampled elevations from %s", gpr.name, params.dem_path)

    traces.update_distance()


def emit(gpr, source_path, params, n_units):
    output_path = output_path_for(source_path, params.output_path, n_units)
    outputs = []
    errors = []

    if not params.no_export:
        try:
            outputs.append(io.export_netcdf(gpr, output_path))
        except ExportError as exc:
            errors.append(str(exc))

    render_path = _optional_path(params.render_path, output_path.with_suffix(".jpg"))
    if render_path is not None:
        try:
            outputs.append(io.render(gpr, render_path))
        except ExportError as exc:
            errors.append(str(exc))

    track_path = _optional_path(
        params.track_path, sibling_with_stem_suffix(output_path, "_track", ".csv")
    )
    if track_path is not None:
        try:
            outputs.append(io.export_track(gpr, track_path))
        except ExportError as exc:
            errors.append(str(exc))

    if errors:
        raise ExportError("; ".join(errors))
    return outputs


def process_unit(gpr, source_path, params, n_units):
    apply_corrections(gpr, params)
    gpr.apply_steps(params.steps)
    return emit(gpr, source_path, params, n_units)


def _run_unit(name, work):
    try:
        outputs = work()
    except GPRError as exc:
        logger.error("%s failed: %s", name, exc)
        return UnitResult(name, False, str(exc))
    except Exception as exc:
        logger.exception("%s failed unexpectedly", name)
        return UnitResult(name, False, f"{type(exc).__name__}: {exc}")
    return UnitResult(name, True, outputs=outputs or [])


def _load(path, params):
    try:
        return io.load(path, cor_path=params.cor_path, medium_velocity=params.medium_velocity)
    except GPRError:
        raise
    except Exception as exc:
        raise LoadError(f"Could not load {path}: {type(exc).__name__}: {exc}") from exc


def _map(params, func, items):
    if params.jobs > 1 and len(items) > 1:
        with ThreadPoolExecutor(max_workers=params.jobs) as executor:
            return list(executor.map(func, items))
    return [func(item) for item in items]


def show_info(params):
    def work(path):
        def report():
            print(io.format_info(_load(path, params)))
            print()

        return _run_unit(Path(path).stem, report)

    # Printing order must follow the input order
    return [work(path) for path in params.filepaths]


def load_groups(params):
    """Load every file, then merge the ones closer in time than the threshold."""
    paths = list(params.filepaths)
    loaded = {}

    def load_one(path):
        try:
            return path, _load(path, params), None
        except GPRError as exc:
            return path, None, exc
        except Exception as exc:
            logger.exception("%s failed unexpectedly", Path(path).stem)
            return path, None, exc

    failures = []
    for path, gpr, exc in _map(params, load_one, paths):
        if exc is None:
            loaded[path] = gpr
        else:
            logger.error("%s failed: %s", Path(path).stem, exc)
            failures.append((paths.index(path), UnitResult(Path(path).stem, False, str(exc))))

    ordered = list(loaded)
    intervals = []
    for path in ordered:
        start, end = loaded[path].traces.time_range()
        if not math.isfinite(start):
            start = end = math.inf
        intervals.append((start, end))

    threshold = params.merge.total_seconds()
    groups = []
    for indices in group_by_time(intervals, threshold):
        members = [ordered[i] for i in indices]
        groups.append((members[0], [loaded[path] for path in members]))
    return groups, failures


def run(params):
    if not params.filepaths:
        raise FileResolutionError("No files to process")

    if params.only_info:
        return show_info(params)

    if not params.steps:
        logger.warning("No processing steps specified. Saving unprocessed data.")

    if params.merge is not None:
        groups, failures = load_groups(params)
        n_units = len(groups)

        def work(group):
            source_path, profiles = group

            def process():
                gpr = merge_profiles(profiles)
                return process_unit(gpr, source_path, params, n_units)

            return _run_unit(profiles[0].name, process)

        # Results follow the input order, keyed by the first member of each group
        paths = list(params.filepaths)
        keyed = failures + [
            (paths.index(group[0]), result) for group, result in zip(groups, _map(params, work, groups))
        ]
        return [result for _, result in sorted(keyed, key=lambda item: item[0])]

    n_units = len(params.filepaths)

    def work(path):
        def process():
            gpr = _load(path, params)
            return process_unit(gpr, path, params, n_units)

        return _run_unit(Path(path).stem, process)

    return _map(params, work, list(params.filepaths))
