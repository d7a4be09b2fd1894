import argparse
import logging
import sys
from pathlib import Path

from . import __version__, coords, engine
from .errors import ConfigurationError, GPRError
from .gpr import DEFAULT_VELOCITY
from .logging_config import setup_logging
from .steps import (
    all_available_steps,
    default_processing_profile,
    default_with_topo_profile,
    parse_profile,
    parse_step_list,
)
from .tools import parse_duration

logger = logging.getLogger(__name__)


def build_argparser():
    parser = argparse.ArgumentParser(
        prog="gprproc",
        description="Process Ground Penetrating Radar (GPR) profiles.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-f",
        "--filepath",
        type=str,
        help="Filepath of the header file or a glob pattern of many files.",
    )
    parser.add_argument(
        "-v",
        "--velocity",
        type=float,
        default=DEFAULT_VELOCITY,
        help="Velocity of the medium in m/ns. Defaults to the typical velocity of ice.",
    )
    parser.add_argument(
        "-c",
        "--cor",
        type=Path,
        help="Load a separate '.cor' file. If not given, it is searched for automatically.",
    )
    parser.add_argument("-d", "--dem", type=Path, help="Correct elevation values with a DEM.")
    parser.add_argument(
        "--crs",
        type=str,
        help="Coordinate reference system to project coordinates in. "
        "Defaults to the UTM zone of the profile.",
    )
    parser.add_argument(
        "-t",
        "--track",
        nargs="?",
        const="",
        default=None,
        help="Export the location track to a CSV file. Defaults to the output "
        "filename location and stem + '_track.csv'.",
    )

    g_steps = parser.add_mutually_exclusive_group()
    g_steps.add_argument(
        "--steps",
        type=str,
        help="Processing steps to run, separated by commas. "
        "Can be a filepath to a newline separated step file.",
    )
    g_steps.add_argument(
        "--default",
        action="store_true",
        help="Process with the default profile. See '--show-default' to list the profile.",
    )
    g_steps.add_argument(
        "--default-with-topo",
        action="store_true",
        help="Process with the default profile plus topographic correction.",
    )

    g_exit = parser.add_mutually_exclusive_group()
    g_exit.add_argument(
        "--show-default", action="store_true", help="Show the default profile and exit."
    )
    g_exit.add_argument(
        "--show-all-steps", action="store_true", help="Show the available steps and exit."
    )
    g_exit.add_argument(
        "-i", "--info", action="store_true", help="Only show metadata for the file(s)."
    )
    g_exit.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Output filename or directory. Defaults to the input filename with a '.nc' extension.",
    )

    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress progress messages.")
    parser.add_argument(
        "-r",
        "--render",
        nargs="?",
        const="",
        default=None,
        help="Render an image of the profile. Defaults to a jpg next to the output file.",
    )
    parser.add_argument("--no-export", action="store_true", help="Don't export a netCDF file.")
    parser.add_argument(
        "--merge",
        type=str,
        help="Merge profiles closer in time than the given threshold in batch mode (e.g. '10 min').",
    )
    parser.add_argument(
        "--override-antenna-mhz",
        type=float,
        help="Override the antenna center frequency (in MHz) of the file metadata.",
    )
    parser.add_argument(
        "-j", "--jobs", type=int, default=1, help="Number of files to process in parallel."
    )
    parser.add_argument("--log-file", type=str, help="Also write the log to this file.")
    return parser


def print_all_steps():
    print("Name\t\tDescription")
    for name, description in all_available_steps():
        print(f"{name}\n{'-' * len(name)}\n{description}\n")


def print_default_profile():
    for step in default_processing_profile():
        print(step)


def resolve_steps(args):
    if args.info:
        return []
    if args.steps is not None:
        return parse_step_list(args.steps)
    if args.default_with_topo:
        return parse_profile(default_with_topo_profile())
    if args.default:
        return parse_profile(default_processing_profile())
    return []


def args_to_action(args):
    """
    Turn parsed arguments into RunParams.

    Returns None when the invocation is already complete (listing commands).
    Raises a ConfigurationError (or subclass) on invalid input, before any
    file is read.
    """
    if args.show_all_steps:
        print_all_steps()
        return None
    if args.show_default:
        print_default_profile()
        return None

    merge = parse_duration(args.merge) if args.merge is not None else None

    if args.filepath is None:
        raise ConfigurationError(
            'No filepath given.\nUse the help text ("-h" or "--help") for assistance.'
        )
    if args.velocity <= 0:
        raise ConfigurationError(f"Velocity must be positive, got {args.velocity}")
    if args.jobs < 1:
        raise ConfigurationError(f"--jobs must be >= 1, got {args.jobs}")
    if args.crs is not None:
        coords.parse_crs(args.crs)
    if args.dem is not None and not Path(args.dem).is_file():
        raise ConfigurationError(f"DEM not found: {args.dem}")
    if args.cor is not None and not Path(args.cor).is_file():
        raise ConfigurationError(f"Coordinate file not found: {args.cor}")

    steps = resolve_steps(args)
    filepaths = engine.resolve_filepaths(args.filepath)

    return engine.RunParams(
        filepaths=tuple(filepaths),
        output_path=args.output,
        only_info=args.info,
        dem_path=args.dem,
        cor_path=args.cor,
        medium_velocity=args.velocity,
        crs=args.crs,
        track_path=args.track,
        steps=tuple(steps),
        no_export=args.no_export,
        render_path=args.render,
        merge=merge,
        override_antenna_mhz=args.override_antenna_mhz,
        jobs=args.jobs,
    )


def error(message, code=1):
    print(message, file=sys.stderr)
    return code


def run_args(args):
    setup_logging(logging.WARNING if args.quiet else logging.INFO, log_file=args.log_file)
    try:
        params = args_to_action(args)
        if params is None:
            return 0
        results = engine.run(params)
    except GPRError as exc:
        return error(str(exc))

    failed = [result for result in results if not result.success]
    for result in failed:
        print(f"{result.name}: {result.error}", file=sys.stderr)
    return 1 if failed else 0


def run_cli(**kwargs):
    """
    Call gprproc with keyword arguments named like the long CLI options.

    ``steps`` may be a list of step tokens; ``track`` and ``render`` accept a
    path or True for the default location. Returns the exit code.
    """
    args = build_argparser().parse_args([])
    for key, value in kwargs.items():
        if not hasattr(args, key):
            raise TypeError(f"Unknown option: {key}")
        if key == "steps" and isinstance(value, (list, tuple)):
            value = ",".join(value)
        elif key in ("track", "render") and value is True:
            value = ""
        elif key in ("output", "dem", "cor") and value is not None:
            value = Path(value)
        setattr(args, key, value)
    return run_args(args)


def main(argv=None):
    return run_args(build_argparser().parse_args(argv))
