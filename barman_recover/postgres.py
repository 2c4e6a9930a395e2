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
This module represents the recovery PostgreSQL instance: its pid file,
its process and the pg_ctl driven start and stop operations.
"""

import collections
import errno
import logging
import os
import signal
import time

from barman_recover import output
from barman_recover.command_wrappers import Command, Pgrep, ere_quote
from barman_recover.exceptions import StartupFailed, TeardownException
from barman_recover.utils import force_str

_logger = logging.getLogger(__name__)

#: Name of the pid file PostgreSQL writes in its data directory
PID_FILE_NAME = "postmaster.pid"

#: Marker of a fatal message in the PostgreSQL server log
FATAL_MARKER = "FATAL"

#: Postmaster statuses meaning the server accepts connections
READY_STATUSES = ("ready", "standby")

# create a namedtuple object called HealthCheck
# with 'ready', 'fatal_lines' and 'log_content' as properties
HealthCheck = collections.namedtuple("HealthCheck", "ready fatal_lines log_content")


def is_process_alive(pid):
    """
    Check if a process exists sending it the signal 0

    :param int pid: the process id
    :rtype: bool
    """
    try:
        os.kill(pid, signal.SIG_DFL)
    except OSError as e:
        # The process exists, but belongs to somebody else
        if e.errno == errno.EPERM:
            return True
        return False
    return True


def terminate_process(pid, retries=10):
    """
    Terminate a process with SIGTERM, waiting for its exit

    Returns True if terminated successfully False otherwise

    :param int pid: the process id
    :param int retries: number of times the method will check
        if the process is still alive
    :rtype: bool
    """
    try:
        _logger.debug("Sending SIGTERM to PID %s", pid)
        os.kill(pid, signal.SIGTERM)
        _logger.debug("os.kill call succeeded")
    except OSError as e:
        _logger.debug("os.kill call failed: %s", e)
        # The process doesn't exists. It has probably just terminated.
        if e.errno == errno.ESRCH:
            return True
        # Something unexpected has happened
        _logger.error("Unable to terminate PID %s: %s", pid, e)
        return False
    # Check if the process have been killed. the fastest (and maybe safest)
    # way is to send a kill with 0 as signal.
    for _ in range(retries):
        _logger.debug("Checking with SIG_DFL if PID %s is still alive", pid)
        if not is_process_alive(pid):
            return True
        time.sleep(1)
    _logger.debug("The PID %s has not been terminated after %s retries", pid, retries)
    return False


class PostmasterPidFile(object):
    """
    Content of a postmaster.pid file
    """

    def __init__(self, path):
        """
        :param str path: the full path of the pid file
        """
        self.path = path
        self.pid = None
        self.data_directory = None
        self.port = None
        self.status = None

    def exists(self):
        """
        Check if the pid file is present
        """
        return os.path.exists(self.path)

    def read(self):
        """
        Parse the pid file.

        Only the first line (the pid) is mandatory. The other lines are
        the data directory, the start time, the port, the socket directory,
        the listen address, the shared memory key and, since PostgreSQL 10,
        the postmaster status.

        :return bool: True if a valid pid has been read
        """
        self.pid = self.data_directory = self.port = self.status = None
        try:
            with open(self.path) as pid_file:
                lines = [line.strip() for line in pid_file.readlines()]
        except (OSError, IOError) as e:
            _logger.debug("Unable to read pid file %s: %s", self.path, e)
            return False
        if not lines or not lines[0].isdigit():
            _logger.debug("Invalid pid file %s: %r", self.path, lines[:1])
            return False
        self.pid = int(lines[0])
        if len(lines) > 1:
            self.data_directory = lines[1]
        if len(lines) > 3 and lines[3].isdigit():
            self.port = int(lines[3])
        if len(lines) > 7:
            self.status = lines[7] or None
        return True


class RecoveryInstance(object):
    """
    The throwaway PostgreSQL instance running on a recovered data directory
    """

    def __init__(self, session, config, pg_ctl):
        """
        :param barman_recover.recovery_executor.RecoverySession session:
            the recovery parameters
        :param barman_recover.config.Config config: the configuration
        :param barman_recover.command_wrappers.PgCtl pg_ctl: the pg_ctl
            wrapper for the PostgreSQL version of the backup
        """
        self.session = session
        self.config = config
        self.pg_ctl = pg_ctl
        self.pid_file = PostmasterPidFile(
            os.path.join(session.recovery_path, PID_FILE_NAME)
        )

    def stop(self):
        """
        Make sure no PostgreSQL is running on the recovery path.

        The pid file is the preferred source of truth. When it is missing
        the process table is searched for a postgres process using the
        recovery path, which is terminated with SIGTERM.

        :raises TeardownException: if a running instance cannot be stopped
        """
        if not self.pid_file.exists():
            output.info(
                "Unable to find PID file for PostgreSQL in %s",
                self.session.recovery_path,
            )
            self.kill()
            return
        if not self.pid_file.read() or not is_process_alive(self.pid_file.pid):
            output.info(
                "No running PostgreSQL found for pid: %s, continuing...",
                self.pid_file.pid,
            )
            return
        output.debug("PID: %s found running", self.pid_file.pid)
        ret = self.pg_ctl.stop(self.session.recovery_path)
        if ret != 0:
            raise TeardownException(
                "PostgreSQL with datadir %s and pid: %s could not be stopped "
                "(pg_ctl exit code: %s)"
                % (self.session.recovery_path, self.pid_file.pid, ret)
            )
        output.info(
            "stopped PostgreSQL for pid: %s with datadir: %s",
            self.pid_file.pid,
            self.session.recovery_path,
        )

    def process_pattern(self):
        """
        The pattern matching the command line of a postgres process
        running on the recovery path

        :rtype: str
        """
        return "postgres.+%s( |$)" % ere_quote(self.session.recovery_path)

    def kill(self):
        """
        Terminate with SIGTERM every postgres process owned by the
        service user and running on the recovery path.

        :raises TeardownException: if a process cannot be terminated
        """
        pids = Pgrep().find(self.process_pattern(), user=self.session.service_user)
        if not pids:
            output.info(
                "PostgreSQL is not running with datadir: %s, continuing",
                self.session.recovery_path,
            )
            return
        for pid in pids:
            output.info("PID of PostgreSQL to kill: %s", pid)
            if not terminate_process(pid, retries=self.config.stop_timeout):
                raise TeardownException(
                    "can't stop PostgreSQL with datadir %s and pid: %s"
                    % (self.session.recovery_path, pid)
                )
            output.info(
                "killed PostgreSQL with datadir %s and pid: %s",
                self.session.recovery_path,
                pid,
            )

    def start(self):
        """
        Start the instance with pg_ctl.

        The startup log is truncated first, then it receives both the
        server log and the output of pg_ctl.

        :return int: the exit code of pg_ctl
        """
        log_path = self.config.recovery_log
        try:
            open(log_path, "w").close()
            with open(log_path, "a") as log_file:
                handler = Command.make_file_handler(log_file)
                return self.pg_ctl.start(
                    self.session.recovery_path,
                    log_path,
                    out_handler=handler,
                    err_handler=handler,
                )
        except (OSError, IOError) as e:
            raise StartupFailed(
                "unable to write the startup log %s: %s" % (log_path, force_str(e))
            )

    def is_ready(self):
        """
        Check if the instance is up: the pid file must exist, its process
        must answer a signal 0 check and, when the pid file reports it,
        the postmaster status must allow connections.

        :rtype: bool
        """
        if not self.pid_file.read():
            return False
        if not is_process_alive(self.pid_file.pid):
            return False
        # PostgreSQL before 10 doesn't write the status line
        if self.pid_file.status is None:
            return True
        return self.pid_file.status in READY_STATUSES

    def wait_until_ready(self, timeout=None):
        """
        Poll the instance once per second until it is ready

        :param int|None timeout: number of one second attempts,
            defaults to the configured startup_timeout
        :return bool: True if the instance is ready
        """
        if timeout is None:
            timeout = self.config.startup_timeout
        for attempt in range(timeout):
            if self.is_ready():
                _logger.debug("Recovery instance ready after %s attempts", attempt + 1)
                return True
            time.sleep(1)
        return False

    def check_health(self, ready):
        """
        Scan the startup log for fatal messages

        :param bool ready: the result of the readiness poll
        :rtype: HealthCheck
        """
        try:
            with open(self.config.recovery_log) as log_file:
                content = log_file.read()
        except (OSError, IOError) as e:
            _logger.warning(
                "Unable to read the startup log %s: %s", self.config.recovery_log, e
            )
            content = ""
        fatal_lines = [line for line in content.splitlines() if FATAL_MARKER in line]
        return HealthCheck(ready, fatal_lines, content)
