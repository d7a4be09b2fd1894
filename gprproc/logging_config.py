"""
Logging setup for the gprproc namespace.
"""
import logging
import sys


def setup_logging(level=logging.INFO, log_file=None):
    logger = logging.getLogger("gprproc")
    logger.setLevel(level)

    # Re-running the CLI in one interpreter (run_cli) would otherwise stack handlers
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
