# -*- coding: utf-8 -*-
# © Copyright EnterpriseDB UK Limited 2011-2025
#
# This file is part of barman-recover.
#
# barman-recover is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# barman-recover is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with barman-recover.  If not, see <http://www.gnu.org/licenses/>.

"""
This module contains utility functions used in barman-recover.
"""

import logging
import logging.handlers
import os
import re
from argparse import ArgumentTypeError

import dateutil.parser

_logger = logging.getLogger(__name__)


def mkpath(directory):
    """
    Recursively create a target directory.

    If the path already exists it does nothing.

    :param str directory: directory to be created
    """
    if not os.path.isdir(directory):
        os.makedirs(directory)


def configure_logging(
    log_file,
    log_level=logging.INFO,
    log_format="%(asctime)s %(name)s %(levelname)s: %(message)s",
):
    """
    Configure the logging module

    :param str,None log_file: target file path. If None use standard error.
    :param int log_level: min log level to be reported in log file.
        Default to INFO
    :param str log_format: format string used for a log line.
        Default to "%(asctime)s %(name)s %(levelname)s: %(message)s"
    """
    warn = None
    handler = logging.StreamHandler()
    if log_file:
        log_file = os.path.abspath(log_file)
        log_dir = os.path.dirname(log_file)
        try:
            mkpath(log_dir)
            handler = logging.handlers.WatchedFileHandler(log_file, encoding="utf-8")
        except (OSError, IOError):
            # fallback to standard error
            warn = (
                "Failed opening the requested log file. "
                "Using standard error instead."
            )
    formatter = logging.Formatter(log_format)
    handler.setFormatter(formatter)
    logging.root.addHandler(handler)
    if warn:
        # this will be always displayed because the default level is WARNING
        _logger.warning(warn)
    logging.root.setLevel(log_level)


def parse_log_level(log_level):
    """
    Convert a log level to its int representation as required by
    logging module.

    :param log_level: An integer or a string
    :return: an integer or None if an invalid argument is provided
    """
    try:
        log_level_int = int(log_level)
    except ValueError:
        log_level_int = logging.getLevelName(str(log_level).upper())
    if isinstance(log_level_int, int):
        return log_level_int
    return None


# noinspection PyProtectedMember
def get_log_levels():
    """
    Return a list of available log level names
    """
    level_to_name = logging._levelToName
    for level in sorted(level_to_name):
        yield level_to_name[level]


def which(executable, path=None):
    """
    This method is useful to find if a executable is present into the
    os PATH

    :param str executable: The name of the executable to find
    :param str|None path: An optional search path to override the current one.
    :return str|None: the path of the executable or None
    """
    # Get the system path if needed
    if path is None:
        path = os.getenv("PATH")
    # If the path is None at this point we have nothing to search
    if path is None:
        return None
    # If executable is an absolute path, check if it exists and is executable
    # otherwise return failure.
    if os.path.isabs(executable):
        if os.path.exists(executable) and os.access(executable, os.X_OK):
            return executable
        else:
            return None
    # Search the requested executable in every directory present in path and
    # return the first occurrence that exists and is executable.
    for file_path in path.split(os.path.pathsep):
        file_path = os.path.join(file_path, executable)
        # If the file exists and is executable return the full path.
        if os.path.exists(file_path) and os.access(file_path, os.X_OK):
            return file_path
    # If no matching file is present on the system return None
    return None


def force_str(obj, encoding="utf-8", errors="replace"):
    """
    Force any object to an unicode string.

    Code inspired by Django's force_text function
    """
    # Handle the common case first for performance reasons.
    if isinstance(obj, str):
        return obj
    try:
        if isinstance(obj, bytes):
            obj = str(obj, encoding, errors)
        else:
            obj = str(obj)
    except (UnicodeDecodeError, TypeError):
        if isinstance(obj, Exception):
            obj = " ".join(force_str(arg, encoding, errors) for arg in obj.args)
        else:
            # As last resort, use a repr call to avoid any exception
            obj = repr(obj)
    return obj


def parse_major_version(version_string):
    """
    Extract the PostgreSQL major version from a full version string.

    Since PostgreSQL 10 the major version is the first number only
    (``14.5`` -> ``14``), while older releases use the first two
    (``9.6.24`` -> ``9.6``).

    :param str version_string: a full version such as ``9.6.24`` or ``14.5``
    :return str|None: the major version, None if it cannot be parsed
    """
    if not version_string:
        return None
    match = re.match(r"^(\d+)(?:\.(\d+))?", version_string.strip())
    if not match:
        return None
    major = int(match.group(1))
    if major >= 10:
        return str(major)
    if match.group(2) is None:
        return None
    return "%s.%s" % (major, match.group(2))


def check_positive(value):
    """
    Check for a positive integer option

    :param value: str containing the value to check
    """
    if value is None:
        return None
    try:
        int_value = int(value)
    except Exception:
        raise ArgumentTypeError("'%s' is not a valid input" % value)
    if int_value < 1:
        raise ArgumentTypeError("'%s' is not a valid positive integer" % value)
    return int_value


def check_port(value):
    """
    Check for a valid TCP port number

    :param value: str containing the value to check
    """
    if value is None:
        return None
    port = check_positive(value)
    if port > 65535:
        raise ArgumentTypeError("'%s' is not a valid port number" % value)
    return port


def check_tli(value):
    """
    Check for a positive integer option, and also make "current" and "latest"
    acceptable values

    :param value: str containing the value to check
    """
    if value is None:
        return None
    if value in ["current", "latest"]:
        return value
    else:
        return check_positive(value)


def check_target_time(value):
    """
    Check that a recovery target time can be parsed.

    The original string is returned untouched, because it is handed over
    to barman which performs its own parsing.

    :param value: str containing the value to check
    """
    if value is None:
        return None
    try:
        dateutil.parser.parse(value)
    except (ValueError, OverflowError):
        raise ArgumentTypeError("'%s' is not a valid recovery target time" % value)
    return value


def check_backup_id(value):
    """
    Check that a backup id can be safely used as a directory name

    :param value: str containing the value to check
    """
    if value is None:
        return None
    if value.strip() in ("", ".", "..") or os.sep in value:
        raise ArgumentTypeError("'%s' is not a valid backup id" % value)
    return value
