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
This module control how the output of barman-recover will be rendered
"""

import inspect
import logging
import sys

from barman_recover.exceptions import STATE_CRITICAL, STATE_OK, STATE_UNKNOWN
from barman_recover.utils import force_str

__all__ = [
    "error_occurred",
    "debug",
    "info",
    "warning",
    "error",
    "exception",
    "result",
    "close_and_exit",
    "close",
    "set_output_writer",
    "AVAILABLE_WRITERS",
    "DEFAULT_WRITER",
    "ConsoleOutputWriter",
    "NagiosOutputWriter",
]

#: True if error or exception methods have been called
error_occurred = False

#: Exit code if error occurred
error_exit_code = STATE_CRITICAL


def _format_message(message, args):
    """
    Format a message using the args list. The result will be equivalent to

        message % args

    If args list contains a dictionary as its only element the result will be

        message % args[0]

    :param str message: the template string to be formatted
    :param tuple args: a list of arguments
    :return: the formatted message
    :rtype: str
    """
    if len(args) == 1 and isinstance(args[0], dict):
        return message % args[0]
    elif len(args) > 0:
        return message % args
    else:
        return message


def _put(level, message, *args, **kwargs):
    """
    Send the message with all the remaining positional arguments to
    the configured output manager with the right output level. The message will
    be sent also to the logger unless  explicitly disabled with log=False

    No checks are performed on level parameter as this method is meant
    to be called only by this module.

    If level == 'exception' the stack trace will be also logged

    :param str level:
    :param str message: the template string to be formatted
    :param tuple args: all remaining arguments are passed to the log formatter
    :key bool log: whether to log the message
    :key bool is_error: treat this message as an error
    :key int exit_code: the exit code to use if the program terminates
    """
    # handle keyword-only parameters
    log = kwargs.pop("log", True)
    is_error = kwargs.pop("is_error", False)
    global error_exit_code
    error_exit_code = kwargs.pop("exit_code", error_exit_code)
    if len(kwargs):
        raise TypeError(
            "%s() got an unexpected keyword argument %r"
            % (inspect.stack()[1][3], kwargs.popitem()[0])
        )
    if is_error:
        global error_occurred
        error_occurred = True
        _writer.error_occurred()
    # Make sure the message is an unicode string
    if message:
        message = force_str(message)
    # dispatch the call to the output handler
    getattr(_writer, level)(message, *args)
    # log the message as originating from caller's caller module
    if log:
        exc_info = False
        if level == "exception":
            level = "error"
            exc_info = True
        frm = inspect.stack()[2]
        mod = inspect.getmodule(frm[0])
        logger = logging.getLogger(mod.__name__ if mod else __name__)
        log_level = logging.getLevelName(level.upper())
        logger.log(log_level, message, *args, **{"exc_info": exc_info})


def _dispatch(obj, prefix, name, *args, **kwargs):
    """
    Dispatch the call to the %(prefix)s_%(name) method of the obj object

    :param obj: the target object
    :param str prefix: prefix of the method to be called
    :param str name: name of the method to be called
    :param tuple args: all remaining positional arguments will be sent
        to target
    :param dict kwargs: all remaining keyword arguments will be sent to target
    :return: the result of the invoked method
    :raise ValueError: if the target method is not present
    """
    method_name = "%s_%s" % (prefix, name)
    handler = getattr(obj, method_name, None)
    if callable(handler):
        return handler(*args, **kwargs)
    else:
        raise ValueError(
            "The object %r does not have the %r method" % (obj, method_name)
        )


def debug(message, *args, **kwargs):
    """
    Output a message with severity 'DEBUG'

    :key bool log: whether to log the message
    """
    _put("debug", message, *args, **kwargs)


def info(message, *args, **kwargs):
    """
    Output a message with severity 'INFO'

    :key bool log: whether to log the message
    """
    _put("info", message, *args, **kwargs)


def warning(message, *args, **kwargs):
    """
    Output a message with severity 'WARNING'

    :key bool log: whether to log the message
    """
    _put("warning", message, *args, **kwargs)


def error(message, *args, **kwargs):
    """
    Output a message with severity 'ERROR'.
    Also records that an error has occurred unless the ignore parameter
    is True.

    :key bool ignore: avoid setting an error exit status (default False)
    :key bool log: whether to log the message
    :key int exit_code: the exit code to use if the program terminates
    """
    # ignore is a keyword-only parameter
    ignore = kwargs.pop("ignore", False)
    if not ignore:
        kwargs.setdefault("is_error", True)
    _put("error", message, *args, **kwargs)


def exception(message, *args, **kwargs):
    """
    Output a message with severity 'EXCEPTION'

    The stack trace of the exception being handled is sent to the log.

    :key bool ignore: avoid setting an error exit status
    :key bool log: whether to log the message
    :key int exit_code: the exit code to use if the program terminates
    """
    ignore = kwargs.pop("ignore", False)
    if not ignore:
        kwargs.setdefault("is_error", True)
    _put("exception", message, *args, **kwargs)


def result(command, *args, **kwargs):
    """
    Output the result of an operation.

    :param str command: name of the command are being executed
    :param tuple args: all remaining positional arguments will be sent
        to the output processor
    :param dict kwargs: all keyword arguments will be sent
        to the output processor
    """
    try:
        _dispatch(_writer, "result", command, *args, **kwargs)
    except ValueError:
        exception(
            'The %s writer does not support the "%s" command',
            _writer.__class__.__name__,
            command,
            exit_code=STATE_UNKNOWN,
        )
        close_and_exit()


def close_and_exit():
    """
    Close the output writer and terminate the program.

    If an error has been emitted the program will report a non zero return
    value.
    """
    close()
    if error_occurred:
        sys.exit(error_exit_code)
    else:
        sys.exit(STATE_OK)


def close():
    """
    Close the output writer.

    """
    _writer.close()


def set_output_writer(new_writer, *args, **kwargs):
    """
    Replace the current output writer with a new one.

    The new_writer parameter can be a symbolic name or an OutputWriter object

    :param new_writer: the OutputWriter name or the actual OutputWriter
    :type: string or an OutputWriter
    :param tuple args: all remaining positional arguments will be passed
        to the OutputWriter constructor
    :param dict kwargs: all remaining keyword arguments will be passed
        to the OutputWriter constructor
    """
    global _writer
    _writer.close()
    if new_writer in AVAILABLE_WRITERS:
        _writer = AVAILABLE_WRITERS[new_writer](*args, **kwargs)
    else:
        _writer = new_writer


class ConsoleOutputWriter(object):
    def __init__(self, debug=False, quiet=True):
        """
        Default output writer that output everything on console.

        Informational messages are shown only when quiet is False,
        which happens when barman-recover runs in verbose mode.

        :param bool debug: print debug messages on standard error
        :param bool quiet: don't print info messages
        """
        self._debug = debug
        self._quiet = quiet

    def _print(self, message, args, stream):
        """
        Print an encoded message on the given output stream
        """
        # Make sure to add a newline at the end of the message
        if message is None:
            message = "\n"
        else:
            message += "\n"
        self._write(_format_message(message, args), stream)

    @staticmethod
    def _write(text, stream):
        """
        Write a text verbatim on the given output stream
        """
        encoded_msg = text.encode("utf-8")
        try:
            stream.buffer.write(encoded_msg)
        except AttributeError:
            # Streams without a binary buffer
            stream.write(text)
        stream.flush()

    def _out(self, message, args):
        """
        Print a message on standard output
        """
        self._print(message, args, sys.stdout)

    def _err(self, message, args):
        """
        Print a message on standard error
        """
        self._print(message, args, sys.stderr)

    def debug(self, message, *args):
        """
        Emit debug.
        """
        if self._debug:
            self._err("DEBUG: %s" % message, args)

    def info(self, message, *args):
        """
        Normal messages are sent to standard output
        """
        if not self._quiet:
            self._out(message, args)

    def warning(self, message, *args):
        """
        Warning messages are sent to standard error
        """
        self._err("WARNING: %s" % message, args)

    def error(self, message, *args):
        """
        Error messages are sent to standard error
        """
        self._err("ERROR: %s" % message, args)

    def exception(self, message, *args):
        """
        Exception messages are sent to standard error
        """
        self._err("EXCEPTION: %s" % message, args)

    def error_occurred(self):
        """
        Called immediately before any message method when the originating
        call has is_error=True
        """

    def close(self):
        """
        Close the output channel.

        Nothing to do for console.
        """

    def result_list_backup(self, app_name, backup_list):
        """
        Relay the output of barman list-backup unchanged

        :param str app_name: the barman server name
        :param str backup_list: the raw output of the barman command
        """
        if backup_list:
            self._write(backup_list, sys.stdout)

    def result_recovery(self, session, stop_command):
        """
        Render the result of a recovery.

        In manual mode the operator receives the instructions needed to
        use and stop the recovery instance, in automatic mode the success
        is reported only in verbose mode.

        :param barman_recover.recovery_executor.RecoverySession session:
            the parameters of the recovery
        :param str stop_command: the command line stopping the instance
        """
        if session.mode == "manual":
            self._out(
                "PostgreSQL is running on port: %s, in datadir: %s",
                (session.port, session.recovery_path),
            )
            self._out("", ())
            self._out(
                "stop the database (as %s) with '%s'",
                (session.service_user, stop_command),
            )
        else:
            self.info("PostgreSQL is recovered in automatic mode")


class NagiosOutputWriter(ConsoleOutputWriter):
    """
    Nagios output writer.

    This writer doesn't output anything to console.
    On close it writes a nagios-plugin compatible status
    """

    STATUS_LABELS = {
        STATE_OK: "OK",
        STATE_CRITICAL: "CRITICAL",
        STATE_UNKNOWN: "UNKNOWN",
    }

    def __init__(self, debug=False, quiet=True):
        super(NagiosOutputWriter, self).__init__(debug=debug, quiet=quiet)
        #: Error messages, in order of emission
        self.errors = []
        #: Summary of the successful operation
        self.summary = None

    def _out(self, message, args):
        """
        Do not print anything on standard output
        """

    def _err(self, message, args):
        """
        Do not print anything on standard error
        """

    def error(self, message, *args):
        """
        Collect the error, to be reported on close
        """
        self.errors.append(_format_message(message, args))

    def exception(self, message, *args):
        """
        Collect the exception message, to be reported on close
        """
        self.errors.append(_format_message(message, args))

    def result_list_backup(self, app_name, backup_list):
        """
        Summarise the number of available backups
        """
        backups = [line for line in (backup_list or "").splitlines() if line.strip()]
        self.summary = "%d backups available for %s" % (len(backups), app_name)

    def result_recovery(self, session, stop_command):
        """
        Summarise the recovery instance
        """
        self.summary = "backup %s of %s recovered in %s, listening on port %s" % (
            session.backup_id,
            session.app_name,
            session.recovery_path,
            session.port,
        )

    def close(self):
        """
        Display the result of the run as expected by Nagios.
        """
        if error_occurred:
            label = self.STATUS_LABELS.get(error_exit_code, "CRITICAL")
            message = " * ".join(self.errors) or "unexpected error"
            print("BARMAN-RECOVER %s - %s" % (label, message))
        else:
            print("BARMAN-RECOVER OK - %s" % (self.summary or "nothing to do"))


#: This dictionary acts as a registry of available OutputWriters
AVAILABLE_WRITERS = {
    "console": ConsoleOutputWriter,
    "nagios": NagiosOutputWriter,
}

#: The default OutputWriter
DEFAULT_WRITER = "console"

#: the current active writer. Initialized according DEFAULT_WRITER on load
_writer = AVAILABLE_WRITERS[DEFAULT_WRITER]()
