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
This module contains a wrapper for shell commands
"""

import errno
import inspect
import logging
import os
import re
import select
import signal
import subprocess

import barman_recover.utils
from barman_recover.exceptions import CommandFailedException

_logger = logging.getLogger(__name__)


class StreamLineProcessor(object):
    """
    Class deputed to reading lines from a file object, using a buffered read.

    NOTE: This class never call os.read() twice in a row. And is designed to
    work with the select.select() method.
    """

    def __init__(self, fobject, handler):
        """
        :param file fobject: The file that is being read
        :param callable handler: The function (taking only one unicode string
         argument) which will be called for every line
        """
        self._file = fobject
        self._handler = handler
        self._buf = ""

    def fileno(self):
        """
        Method used by select.select() to get the underlying file descriptor.

        :rtype: the underlying file descriptor
        """
        return self._file.fileno()

    def process(self):
        """
        Read the ready data from the stream and for each line found invoke the
        handler.

        :return bool: True when End Of File has been reached
        """
        data = os.read(self._file.fileno(), 4096)
        # If nothing has been read, we reached the EOF
        if not data:
            self._file.close()
            # Handle the last line (always incomplete, maybe empty)
            self._handler(self._buf)
            return True
        self._buf += data.decode("utf-8", "replace")
        # If no '\n' is present, we just read a part of a very long line.
        # Nothing to do at the moment.
        if "\n" not in self._buf:
            return False
        tmp = self._buf.split("\n")
        # Leave the remainder in self._buf
        self._buf = tmp[-1]
        # Call the handler for each complete line.
        lines = tmp[:-1]
        for line in lines:
            self._handler(line)
        return False


class Command(object):
    """
    Wrapper for a system command
    """

    def __init__(
        self,
        cmd,
        args=None,
        check=False,
        allowed_retval=(0,),
        close_fds=True,
        out_handler=None,
        err_handler=None,
    ):
        """
        If the `args` argument is specified the arguments will be always added
        to the ones eventually passed with the actual invocation.

        The subprocess output and error stream will be processed through
        the output and error handler, respectively defined through the
        `out_handler` and `err_handler` arguments. If not provided every line
        will be sent to the log respectively at INFO and WARNING level.

        If the `check` argument is True, the exit code will be checked
        against the `allowed_retval` list, raising a CommandFailedException if
        not in the list.

        Every command is executed exactly once: there is no retry logic.

        :param str cmd: The command to execute, looked up in PATH
        :param list[str]|None args: List of additional arguments to append
        :param bool check: Raise a CommandFailedException if the exit code
            is not present in `allowed_retval`
        :param list[int] allowed_retval: List of exit codes considered as a
            successful termination.
        :param bool close_fds: If set, close all the extra file descriptors
        :param callable out_handler: handler for lines sent on stdout
        :param callable err_handler: handler for lines sent on stderr
        """
        self.pipe = None
        self.args = args if args is not None else []
        self.close_fds = close_fds
        self.check = check
        self.allowed_retval = allowed_retval
        self.ret = None
        self.out = None
        self.err = None
        # Commands always run through execve, so resolve the full path now
        self.cmd = barman_recover.utils.which(cmd)
        if not self.cmd:
            raise CommandFailedException("%s not in PATH" % cmd)
        if out_handler:
            self.out_handler = out_handler
        else:
            self.out_handler = self.make_logging_handler(logging.INFO)
        if err_handler:
            self.err_handler = err_handler
        else:
            self.err_handler = self.make_logging_handler(logging.WARNING)

    @staticmethod
    def _restore_sigpipe():
        """restore default signal handler (http://bugs.python.org/issue1652)"""
        signal.signal(signal.SIGPIPE, signal.SIG_DFL)  # pragma: no cover

    def __call__(self, *args, **kwargs):
        """
        Run the command and return the exit code.

        The output and error strings are not returned, but they can be accessed
        as attributes of the Command object, as well as the exit code.

        Every keyword argument can be specified both in the class constructor
        and during the method call. If specified in both places,
        the method arguments will take the precedence over
        the constructor arguments.

        :rtype: int
        :raise: CommandFailedException
        """
        self.get_output(*args, **kwargs)
        return self.ret

    def get_output(self, *args, **kwargs):
        """
        Run the command and return the output and the error as a tuple.

        The return code is not returned, but it can be accessed as an attribute
        of the Command object, as well as the output and the error strings.

        If the `check` argument is True, the exit code will be checked
        against the `allowed_retval` list, raising a CommandFailedException if
        not in the list.

        :rtype: tuple[str, str]
        :raises: CommandFailedException
        """
        out = []
        err = []
        # If check is true, it must be handled here
        check = kwargs.pop("check", self.check)
        allowed_retval = kwargs.pop("allowed_retval", self.allowed_retval)
        self.execute(
            out_handler=out.append, err_handler=err.append, check=False, *args, **kwargs
        )
        self.out = "\n".join(out)
        self.err = "\n".join(err)

        _logger.debug("Command stdout: %s", self.out)
        _logger.debug("Command stderr: %s", self.err)

        # Raise if check and the return code is not in the allowed list
        if check:
            self.check_return_value(allowed_retval)
        return self.out, self.err

    def check_return_value(self, allowed_retval):
        """
        Check the current return code and raise CommandFailedException when
        it's not in the allowed_retval list

        :param list[int] allowed_retval: list of return values considered
            success
        :raises: CommandFailedException
        """
        if self.ret not in allowed_retval:
            raise CommandFailedException(dict(ret=self.ret, out=self.out, err=self.err))

    def execute(self, *args, **kwargs):
        """
        Execute the command and pass the output to the configured handlers

        The subprocess output and error stream will be processed through
        the output and error handler, respectively defined through the
        `out_handler` and `err_handler` arguments. If not provided every line
        will be sent to the log respectively at INFO and WARNING level.

        If the `check` argument is True, the exit code will be checked
        against the `allowed_retval` list, raising a CommandFailedException if
        not in the list.

        :rtype: int
        :raise: CommandFailedException
        """
        # Check keyword arguments
        check = kwargs.pop("check", self.check)
        allowed_retval = kwargs.pop("allowed_retval", self.allowed_retval)
        close_fds = kwargs.pop("close_fds", self.close_fds)
        out_handler = kwargs.pop("out_handler", self.out_handler)
        err_handler = kwargs.pop("err_handler", self.err_handler)
        if len(kwargs):
            raise TypeError(
                "%s() got an unexpected keyword argument %r"
                % (inspect.stack()[1][3], kwargs.popitem()[0])
            )

        # Reset status
        self.ret = None
        self.out = None
        self.err = None

        # Create the subprocess and save it in the current object to be usable
        # by signal handlers
        pipe = self._build_pipe(args, close_fds)
        self.pipe = pipe

        # Prepare the list of processors
        processors = [
            StreamLineProcessor(pipe.stdout, out_handler),
            StreamLineProcessor(pipe.stderr, err_handler),
        ]

        # Read the streams until the subprocess exits
        self.pipe_processor_loop(processors)

        # Reap the zombie and read the exit code
        pipe.wait()
        self.ret = pipe.returncode

        # Remove the closed pipe from the object
        self.pipe = None
        _logger.debug("Command return code: %s", self.ret)

        # Raise if check and the return code is not in the allowed list
        if check:
            self.check_return_value(allowed_retval)
        return self.ret

    def _build_pipe(self, args, close_fds):
        """
        Build the Pipe object used by the Command

        The resulting command will be composed by:
           self.cmd + self.args + args

        :param args: extra arguments for the subprocess
        :param close_fds: if True all file descriptors except 0, 1 and 2
            will be closed before the child process is executed.
        :rtype: subprocess.Popen
        """
        # Append the argument provided to this method to the base argument list
        args = self.args + list(args)
        cmd = [self.cmd] + args

        # Log the command we are about to execute
        _logger.debug("Command: %r", cmd)
        return subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            preexec_fn=self._restore_sigpipe,
            close_fds=close_fds,
        )

    @staticmethod
    def pipe_processor_loop(processors):
        """
        Process the output received through the pipe until all the provided
        StreamLineProcessor reach the EOF.

        :param list[StreamLineProcessor] processors: a list of
            StreamLineProcessor
        """
        # Loop until all the streams reaches the EOF
        while processors:
            try:
                ready = select.select(processors, [], [])[0]
            except select.error as e:
                # If the select call has been interrupted by a signal
                # just retry
                if e.args[0] == errno.EINTR:
                    continue
                raise

            # For each ready StreamLineProcessor invoke the process() method
            for stream in ready:
                eof = stream.process()
                # Got EOF on this stream
                if eof:
                    # Remove the stream from the list of valid processors
                    processors.remove(stream)

    @classmethod
    def make_logging_handler(cls, level, prefix=None):
        """
        Build a handler function that logs every line it receives.

        The resulting function logs its input at the specified level
        with an optional prefix.

        :param level: The log level to use
        :param prefix: An optional prefix to prepend to the line
        :return: handler function
        """
        class_logger = logging.getLogger(cls.__name__)

        def handler(line):
            if line:
                if prefix:
                    class_logger.log(level, "%s%s", prefix, line)
                else:
                    class_logger.log(level, "%s", line)

        return handler

    @staticmethod
    def make_file_handler(fileobj):
        """
        Build a handler function which writes every line it receives
        to an open text file.

        :param fileobj: a file object opened for writing
        :return: handler function
        """

        def handler(line):
            if line:
                fileobj.write(line + "\n")
                fileobj.flush()

        return handler

    def command_line(self, *args):
        """
        Return the quoted command line that would be executed
        with the given extra arguments

        :rtype: str
        """
        return full_command_quote(self.cmd, self.args + list(args))


class BarmanCli(Command):
    """
    Wrapper for the barman command line interface
    """

    def __init__(self, barman="barman", **kwargs):
        """
        :param str barman: the barman executable
        """
        Command.__init__(self, barman, **kwargs)

    def list_backup(self, app_name):
        """
        Run ``barman list-backup --minimal`` for a barman server.

        The output is stored in the ``out`` attribute.

        :param str app_name: the barman server name
        :return int: the exit code of barman
        """
        self.get_output("list-backup", "--minimal", app_name)
        return self.ret

    @staticmethod
    def build_recover_args(app_name, backup_id, destination, target=None):
        """
        Build the argument list of a ``barman recover`` invocation

        :param str app_name: the barman server name
        :param str backup_id: the backup to recover
        :param str destination: the destination directory
        :param barman_recover.recovery_executor.RecoveryTarget|None target:
            the optional recovery target
        :rtype: list[str]
        """
        args = ["recover", app_name, backup_id, destination]
        if target is not None:
            args += target.to_args()
        return args

    def recover(self, app_name, backup_id, destination, target=None, log_file=None):
        """
        Run ``barman recover``.

        Both stdout and stderr of barman are written to ``log_file``
        when provided.

        :param str app_name: the barman server name
        :param str backup_id: the backup to recover
        :param str destination: the destination directory
        :param barman_recover.recovery_executor.RecoveryTarget|None target:
            the optional recovery target
        :param str|None log_file: path of the file receiving the output
        :return int: the exit code of barman
        """
        args = self.build_recover_args(app_name, backup_id, destination, target)
        if log_file is None:
            return self.execute(*args)
        with open(log_file, "w") as log:
            handler = self.make_file_handler(log)
            return self.execute(out_handler=handler, err_handler=handler, *args)


class PgCtl(Command):
    """
    Wrapper for the pg_ctl command of a given PostgreSQL version
    """

    def __init__(self, pg_ctl, **kwargs):
        """
        :param str pg_ctl: full path of the pg_ctl executable
        """
        Command.__init__(self, pg_ctl, **kwargs)

    def start(self, data_directory, log_file, **kwargs):
        """
        Start PostgreSQL, sending the server log to log_file

        :param str data_directory: the PostgreSQL data directory
        :param str log_file: the server log file
        :return int: the exit code of pg_ctl
        """
        return self.execute("-D", data_directory, "-l", log_file, "start", **kwargs)

    def stop(self, data_directory, mode="fast"):
        """
        Stop PostgreSQL

        :param str data_directory: the PostgreSQL data directory
        :param str mode: the shutdown mode
        :return int: the exit code of pg_ctl
        """
        return self.execute("-D", data_directory, "-m", mode, "stop")

    def stop_command_line(self, data_directory, mode="fast"):
        """
        Return the command line that stops the instance

        :param str data_directory: the PostgreSQL data directory
        :param str mode: the shutdown mode
        :rtype: str
        """
        return self.command_line("-D", data_directory, "-m", mode, "stop")


class Psql(Command):
    """
    Wrapper for the psql client, used to detect the installed
    PostgreSQL version
    """

    VERSION_RE = re.compile(r"\s(\d+(?:\.\d+)*)")

    def __init__(self, psql="psql", **kwargs):
        """
        :param str psql: the psql executable
        """
        Command.__init__(self, psql, **kwargs)

    @classmethod
    def get_major_version(cls):
        """
        Return the major version of the installed psql client

        :return str|None: the major version, None if it cannot be detected
        """
        try:
            command = cls(check=True)
            command("--version")
        except CommandFailedException as e:
            _logger.debug("Error invoking %s: %s", cls.__name__, e)
            return None
        match = cls.VERSION_RE.search(command.out)
        if not match:
            _logger.debug("Error parsing %s version output", command.cmd)
            return None
        return barman_recover.utils.parse_major_version(match.group(1))


class Pgrep(Command):
    """
    Wrapper for pgrep, looking up processes by their full command line
    """

    def __init__(self, pgrep="pgrep", **kwargs):
        """
        :param str pgrep: the pgrep executable
        """
        # 0 means at least a match, 1 means no match at all
        kwargs.setdefault("check", True)
        kwargs.setdefault("allowed_retval", (0, 1))
        Command.__init__(self, pgrep, **kwargs)

    def find(self, pattern, user=None):
        """
        Return the pids of the processes whose command line matches pattern

        :param str pattern: an extended regular expression
        :param str|None user: only match processes of this effective user
        :rtype: list[int]
        """
        args = []
        if user:
            args += ["-u", user]
        args += ["-f", pattern]
        self.get_output(*args)
        return [int(line) for line in self.out.split() if line.isdigit()]


def ere_quote(text):
    """
    Escape a string to be matched literally inside a POSIX
    extended regular expression

    :param str text: the text to escape
    :rtype: str
    """
    return re.sub(r"([.^$*+?()\[\]{}|\\])", r"\\\1", text)


def shell_quote(arg):
    """
    Quote a string argument to be safely included in a shell command line.

    :param str arg: The script argument
    :return: The argument quoted
    """

    # This is an excerpt of the Bash manual page, and the same applies for
    # every Posix compliant shell:
    #
    #     Enclosing characters in single quotes preserves the literal value
    #     of each character within the quotes.  A single quote may not occur
    #     between single quotes, even when pre-ceded by a backslash.
    #
    # If a single quote is contained in the string, we must terminate the
    # string with a quote, insert an apostrophe character escaping it with
    # a backslash, and then start another string using a quote character.

    assert arg is not None
    return "'%s'" % arg.replace("'", "'\\''")


def full_command_quote(command, args=None):
    """
    Produce a command with quoted arguments

    :param str command: the command to be executed
    :param list[str] args: the command arguments
    :rtype: str
    """
    if args is not None and len(args) > 0:
        return "%s %s" % (command, " ".join([shell_quote(arg) for arg in args]))
    else:
        return command
