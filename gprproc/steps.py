"""
Catalog of processing steps and the parser for user step lists.

A step token is a registry name optionally followed by colon-separated
parameters, e.g. ``average_traces:4`` or ``bandpass:200:1200``. Lists are
given inline (comma-separated) or as a file with one token per line.
"""
import enum
import math
import os
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional, Tuple

from .errors import ConfigurationError, ParseError, UnrecognizedStepError

PARAM_SEPARATOR = ":"
STEP_SEPARATOR = ","


class StepName(enum.Enum):
    SUBSET = "subset"
    REMOVE_EMPTY_TRACES = "remove_empty_traces"
    ZERO_CORR_MAX_PEAK = "zero_corr_max_peak"
    ZERO_CORR = "zero_corr"
    EQUIDISTANT_TRACES = "equidistant_traces"
    CORRECT_ANTENNA_SEPARATION = "correct_antenna_separation"
    NORMALIZE_HORIZONTAL_MAGNITUDES = "normalize_horizontal_magnitudes"
    DEWOW = "dewow"
    BANDPASS = "bandpass"
    AUTO_GAIN = "auto_gain"
    KIRCHHOFF_MIGRATION2D = "kirchhoff_migration2d"
    ENVELOPE = "envelope"
    POWER_DB = "power_db"
    ABSLOG = "abslog"
    SIGLOG = "siglog"
    AVERAGE_TRACES = "average_traces"
    CORRECT_TOPOGRAPHY = "correct_topography"


class StepSpec(NamedTuple):
    name: StepName
    description: str
    # Accepted parameter counts and the type every parameter must parse as
    n_params: Tuple[int, ...] = (0,)
    param_type: type = float
    # Returns an error message for out-of-range values, None when they are valid
    check: Optional[Callable] = None


def _at_least(minimum, what):
    def check(values):
        if values and values[0] < minimum:
            return f"{what} needs to be >= {minimum}, got {values[0]}"
        return None

    return check


def _positive(what):
    def check(values):
        if values and values[0] <= 0:
            return f"{what} needs to be > 0, got {values[0]}"
        return None

    return check


def _check_subset(values):
    for lower, upper, what in zip(values[::2], values[1::2], ("trace", "sample")):
        if lower < 0 or lower >= upper:
            return f"Invalid {what} range {lower}-{upper}"
    return None


def _check_bandpass(values):
    low, high = values
    if low < 0 or high <= low:
        return f"Band-pass limits must satisfy 0 <= low < high, got {low}, {high}"
    return None


_CATALOG = (
    StepSpec(
        StepName.SUBSET,
        "Keep a range of traces, optionally also of samples. "
        "Parameters: min_trace:max_trace[:min_sample:max_sample] (end exclusive).",
        (2, 4),
        int,
        _check_subset,
    ),
    StepSpec(
        StepName.REMOVE_EMPTY_TRACES,
        "Remove traces where every sample has the same value (dead traces).",
    ),
    StepSpec(
        StepName.ZERO_CORR_MAX_PEAK,
        "Shift the zero point to the strongest reflection of the mean trace "
        "(the direct wave) and remove all samples above it.",
    ),
    StepSpec(
        StepName.ZERO_CORR,
        "Remove samples above the first break, found where the mean absolute "
        "amplitude exceeds median + threshold_multiplier * std. "
        "Parameter: [threshold_multiplier] (default 1.0).",
        (0, 1),
        check=_at_least(0, "Threshold multiplier"),
    ),
    StepSpec(
        StepName.EQUIDISTANT_TRACES,
        "Resample traces onto an even distance grid, averaging stationary traces. "
        "Parameter: [step_m] (default: the median trace spacing).",
        (0, 1),
        check=_positive("Trace spacing"),
    ),
    StepSpec(
        StepName.CORRECT_ANTENNA_SEPARATION,
        "Correct the depth scale for the geometric offset between transmitter "
        "and receiver.",
    ),
    StepSpec(
        StepName.NORMALIZE_HORIZONTAL_MAGNITUDES,
        "Subtract the median of every sample row to remove horizontal banding. "
        "Parameter: [skip_first] rows to leave untouched (default 0).",
        (0, 1),
        int,
        _at_least(0, "skip_first"),
    ),
    StepSpec(
        StepName.DEWOW,
        "Subtract a running mean along each trace to remove low-frequency wow. "
        "Parameter: [window] in samples (default 5).",
        (0, 1),
        int,
        _at_least(1, "Dewow window"),
    ),
    StepSpec(
        StepName.BANDPASS,
        "Frequency-domain band-pass filter of each trace. "
        "Parameters: low_mhz:high_mhz.",
        (2,),
        check=_check_bandpass,
    ),
    StepSpec(
        StepName.AUTO_GAIN,
        "Automatic gain control: scale depth bins by their inverse standard "
        "deviation. Parameter: [n_bins] (default 100).",
        (0, 1),
        int,
        _at_least(1, "Number of gain bins"),
    ),
    StepSpec(
        StepName.KIRCHHOFF_MIGRATION2D,
        "2D Kirchhoff migration using the medium velocity. "
        "Parameter: [aperture] in traces on each side (default from the maximum depth).",
        (0, 1),
        int,
        _at_least(0, "Migration aperture"),
    ),
    StepSpec(
        StepName.ENVELOPE,
        "Replace each trace by its instantaneous amplitude (analytic signal envelope).",
    ),
    StepSpec(
        StepName.POWER_DB,
        "Power in dB relative to the maximum envelope of each trace.",
    ),
    StepSpec(
        StepName.ABSLOG,
        "Absolute value followed by log10, offset by an adaptive low quantile "
        "so that no zeros reach the logarithm.",
    ),
    StepSpec(
        StepName.SIGLOG,
        "Sign-preserving log10 compression; magnitudes below 10^floor_log10 "
        "become zero. Parameter: [floor_log10] (default 1.0).",
        (0, 1),
    ),
    StepSpec(
        StepName.AVERAGE_TRACES,
        "Average every window consecutive traces into one. Parameter: window (>= 2).",
        (1,),
        int,
        _at_least(2, "Window size"),
    ),
    StepSpec(
        StepName.CORRECT_TOPOGRAPHY,
        "Shift traces vertically so that rows represent elevation instead of depth. "
        "Needs elevation values (from the coordinate file or a DEM). Should run last.",
    ),
)

CATALOG = {spec.name: spec for spec in _CATALOG}

DEFAULT_PROFILE_VERSION = 1
DEFAULT_PROFILE = (
    "remove_empty_traces",
    "zero_corr_max_peak",
    "equidistant_traces",
    "correct_antenna_separation",
    "dewow:5",
    "normalize_horizontal_magnitudes:4",
    "kirchhoff_migration2d",
    "normalize_horizontal_magnitudes:4",
    "auto_gain:100",
    "abslog",
)


@dataclass(frozen=True)
class ProcessingStep:
    name: StepName
    params: Tuple[str, ...] = ()

    @property
    def token(self):
        return PARAM_SEPARATOR.join((self.name.value,) + self.params)

    def numeric_params(self):
        param_type = CATALOG[self.name].param_type
        return [param_type(param) for param in self.params]

    def __str__(self):
        return self.token


def all_available_steps():
    return [(spec.name.value, spec.description) for spec in _CATALOG]


def default_processing_profile():
    return list(DEFAULT_PROFILE)


def default_with_topo_profile():
    return default_processing_profile() + [StepName.CORRECT_TOPOGRAPHY.value]


def base_name(token):
    return token.split(PARAM_SEPARATOR, 1)[0].strip()


def _parse_number(text, param_type):
    try:
        return param_type(text)
    except ValueError:
        # Allow "4.0" for integer parameters
        if param_type is int:
            value = float(text)
            if value.is_integer():
                return int(value)
        raise


def parse_step(token):
    token = token.strip()
    if not token:
        raise ParseError("Empty step in step list")

    name = base_name(token)
    try:
        step_name = StepName(name)
    except ValueError:
        raise UnrecognizedStepError(token) from None

    params = tuple(part.strip() for part in token.split(PARAM_SEPARATOR)[1:])
    if any(not part for part in params):
        raise ParseError(f"Empty parameter in step: {token}")

    spec = CATALOG[step_name]
    if len(params) not in spec.n_params:
        expected = " or ".join(str(n) for n in spec.n_params)
        raise ConfigurationError(
            f"Step {name} takes {expected} parameter(s), got {len(params)}: {token}"
        )
    try:
        values = [_parse_number(param, spec.param_type) for param in params]
    except ValueError:
        raise ConfigurationError(
            f"Invalid parameter for step {name} (expected {spec.param_type.__name__}): {token}"
        ) from None
    if any(not math.isfinite(value) for value in values):
        raise ConfigurationError(f"Parameters of step {name} must be finite numbers: {token}")
    if spec.check is not None:
        problem = spec.check(values)
        if problem:
            raise ConfigurationError(f"{problem}: {token}")
    return ProcessingStep(step_name, tuple(str(value) for value in values))


def _read_step_file(path):
    try:
        with open(path, "r", encoding="utf-8") as handle:
            lines = handle.read().splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        raise ParseError(f"Could not read step file {path}: {exc}") from exc

    tokens = []
    for line in lines:
        line = line.split("#", 1)[0].strip()
        if line:
            tokens.append(line)
    if not tokens:
        raise ParseError(f"Step file {path} contains no steps")
    return tokens


def split_step_list(text):
    if text is None or not str(text).strip():
        raise ParseError("Empty step list")
    text = str(text)
    if os.path.isfile(text):
        return _read_step_file(text)
    return [token.strip() for token in text.strip().split(STEP_SEPARATOR)]


def parse_step_list(text):
    """Parse an inline step list or a step file into validated steps."""
    return [parse_step(token) for token in split_step_list(text)]


def parse_profile(tokens):
    return [parse_step(token) for token in tokens]
