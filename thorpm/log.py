"""Logging setup for thorpm, built on :mod:`loguru`.

The driver modules log through the shared ``loguru`` logger. By default nothing is configured here, so the
loguru defaults apply (stderr, DEBUG and up). Call :func:`start_log` or load a configuration file with a
``[logging]`` table to redirect output.
"""

import os
import sys

from loguru import logger

from . import config

_sink_ids = []


def default_log_path():
    return os.path.join(os.path.expanduser('~'), '.thorpm', 'thorpm.log')


def start_log(log_to_file=True, log_to_stdout=False, log_path=None, log_level="INFO", clear_prev=False):
    """Route log messages to a file and/or stderr.

    :param log_to_file: write log messages to ``log_path``
    :param log_to_stdout: echo log messages to stderr
    :param log_path: log file location, defaults to ``~/.thorpm/thorpm.log``
    :param log_level: minimum level that is emitted, e.g. ``"DEBUG"`` to see every SCPI transaction
    :param clear_prev: remove an existing log file first
    :return: the path of the log file, or None if not logging to a file
    """
    if log_path is None or log_path == "":
        log_path = default_log_path()
    log_path = os.path.abspath(log_path)

    # first remove (default) stderr output and anything we added before
    shutdown_log()
    logger.remove()

    if log_to_file:
        os.makedirs(os.path.dirname(log_path), exist_ok=True)
        if clear_prev and os.path.isfile(log_path):
            os.remove(log_path)
        _sink_ids.append(logger.add(log_path, level=log_level, colorize=False))
    if log_to_stdout:
        _sink_ids.append(logger.add(sys.stderr, level=log_level, colorize=True))

    if log_to_file:
        logger.info("thorpm log started at {}", log_path)
        return log_path
    return None


def shutdown_log():
    while _sink_ids:
        sink_id = _sink_ids.pop()
        try:
            logger.remove(sink_id)
        except ValueError:
            # already removed by somebody else
            pass


@config.register_post_config_hook
def _apply_logging_config():
    if not config.exists("logging"):
        return
    start_log(
        log_to_file=config.get("logging.log_to_file"),
        log_to_stdout=config.get("logging.log_to_stdout"),
        log_path=config.get("logging.log_path"),
        log_level=config.get("logging.level"),
    )
