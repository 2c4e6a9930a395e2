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
This module contains the methods necessary to perform a recovery
"""

import collections
import logging
import os
import pwd
import re
import shutil
from argparse import ArgumentTypeError
from typing import List, NamedTuple, Optional

from barman_recover import fs, output
from barman_recover.command_wrappers import BarmanCli, PgCtl, Psql, full_command_quote
from barman_recover.exceptions import (
    STATE_CRITICAL,
    ConfigRewriteException,
    LatestBackupException,
    ListBackupFailed,
    ParameterException,
    PgCtlNotFound,
    PostgresVersionNotFound,
    RecoveryFailed,
    StartupFailed,
    UnknownRecoveryMode,
)
from barman_recover.postgres import RecoveryInstance
from barman_recover.utils import (
    check_backup_id,
    check_port,
    check_target_time,
    check_tli,
    check_positive,
    force_str,
)

# generic logger for this module
_logger = logging.getLogger(__name__)

MODE_AUTO = "auto"
MODE_MANUAL = "manual"
MODE_LIST = "list"

#: Supported run modes
MODES = (MODE_AUTO, MODE_MANUAL, MODE_LIST)

#: Recovery target options, in priority order: only the first one
#: which has a value is passed to barman recover
TARGET_OPTIONS = (
    ("target_name", "--target-name"),
    ("target_tli", "--target-tli"),
    ("target_time", "--target-time"),
    ("target_xid", "--target-xid"),
)

# create a namedtuple object called Assertion
# with 'filename', 'line', 'key' and 'value' as properties
Assertion = collections.namedtuple("Assertion", "filename line key value")


class RecoveryTarget(NamedTuple):
    """
    The point where the WAL replay stops
    """

    option: str
    value: str

    def to_args(self) -> List[str]:
        """
        The option pair to pass to barman recover
        """
        return [self.option, str(self.value)]


class RecoverySession(NamedTuple):
    """
    The parameters of a barman-recover run, resolved once from the
    command line and the configuration
    """

    mode: str
    app_name: str
    service_user: str
    backup_id: Optional[str] = None
    recovery_path: Optional[str] = None
    port: Optional[int] = None
    pg_version: Optional[str] = None
    pg_ctl: Optional[str] = None
    target: Optional[RecoveryTarget] = None


def select_recovery_target(
    target_name=None, target_tli=None, target_time=None, target_xid=None
):
    """
    Return the recovery target with the highest priority.

    The priority order is name, timeline, time and transaction id.

    :rtype: RecoveryTarget|None
    """
    values = {
        "target_name": target_name,
        "target_tli": target_tli,
        "target_time": target_time,
        "target_xid": target_xid,
    }
    for key, option in TARGET_OPTIONS:
        value = values[key]
        if value is not None and str(value) != "":
            return RecoveryTarget(option, value)
    return None


def get_pg_version(pg_version=None):
    """
    Return the PostgreSQL major version to use, detecting it
    from psql when not explicitly provided

    :param str|None pg_version: the version requested by the user
    :rtype: str
    :raises PostgresVersionNotFound: if the version cannot be detected
    """
    if pg_version:
        return pg_version
    pg_version = Psql.get_major_version()
    if not pg_version:
        raise PostgresVersionNotFound(
            "unable to detect the PostgreSQL version from psql, "
            "please use the --pg-version option"
        )
    return pg_version


def check_pg_ctl(pg_ctl, pg_version):
    """
    Check that pg_ctl exists and is executable by the current user

    :param str pg_ctl: the full path of pg_ctl
    :param str pg_version: the PostgreSQL major version
    :raises PgCtlNotFound: if pg_ctl is missing or not executable
    """
    if not os.path.isfile(pg_ctl):
        raise PgCtlNotFound(
            "pg_ctl could not be found at %s, using PG_VERSION: %s"
            % (pg_ctl, pg_version)
        )
    if not os.access(pg_ctl, os.X_OK):
        raise PgCtlNotFound(
            "%s is not executable by %s" % (pg_ctl, pwd.getpwuid(os.getuid()).pw_name)
        )


def _check_parameter(checker, value, name):
    """
    Validate a parameter with one of the argparse type checkers

    :raises ParameterException: if the value is invalid
    """
    try:
        return checker(value)
    except ArgumentTypeError as e:
        raise ParameterException("invalid %s: %s" % (name, e))


def get_latest_backup(config, app_name, barman=None):
    """
    Return the id of the most recent backup of a barman server.

    Barman lists the backups newest first, so the first line of
    ``barman list-backup --minimal`` is the one we want.

    :param barman_recover.config.Config config: the configuration
    :param str app_name: the barman server name
    :param BarmanCli|None barman: the barman wrapper
    :rtype: str
    :raises LatestBackupException: if barman fails or lists nothing.
        The exit code of barman is propagated.
    """
    if barman is None:
        barman = BarmanCli(config.barman_command)
    ret = barman.list_backup(app_name)
    output.debug("Latest_Backup: %s", barman.out)
    if ret != 0:
        raise LatestBackupException(
            "did not retrieve latest backup from barman, received %s"
            % (barman.out or barman.err),
            exit_code=ret if ret > 0 else STATE_CRITICAL,
        )
    backups = [line.strip() for line in barman.out.splitlines() if line.strip()]
    if not backups:
        raise LatestBackupException(
            "did not retrieve latest backup from barman, no backup available for %s"
            % app_name
        )
    output.info("LATEST_BACKUP: %s", backups[0])
    output.info("AUTO_RECOVERY_APPNAME: %s", app_name)
    return backups[0]


def resolve_session(args, config, barman=None):
    """
    Build the parameters of the run from the command line and
    the configuration.

    Automatic mode always uses the configured application name, path
    and port, and recovers the latest backup. Manual mode requires an
    application name and a backup id, and recovers into a directory
    named after the backup id, listening on the -p port or on the
    configured manual port.

    :param argparse.Namespace args: the command line arguments
    :param barman_recover.config.Config config: the configuration
    :param BarmanCli|None barman: the barman wrapper used to look up
        the latest backup
    :rtype: RecoverySession
    """
    mode = args.mode
    if mode not in MODES:
        raise UnknownRecoveryMode("bad RECOVERY_MODE: %s" % mode)

    if mode == MODE_LIST:
        session = RecoverySession(
            mode=mode,
            app_name=args.app_name or config.auto_recovery_appname,
            service_user=config.service_user,
        )
        output.debug("RECOVERY_APPNAME:     %s", session.app_name)
        return session

    if mode == MODE_MANUAL:
        if not args.app_name:
            raise ParameterException("manual mode requires the --app-name option")
        if not args.backup_name:
            raise ParameterException("manual mode requires the --backup-name option")
        _check_parameter(check_backup_id, args.backup_name, "backup name")

    pg_version = get_pg_version(args.pg_version)
    pg_ctl = config.pg_ctl_path(pg_version)
    check_pg_ctl(pg_ctl, pg_version)

    if mode == MODE_AUTO:
        app_name = config.auto_recovery_appname
        session = RecoverySession(
            mode=mode,
            app_name=app_name,
            service_user=config.service_user,
            backup_id=get_latest_backup(config, app_name, barman),
            recovery_path=config.auto_recovery_path,
            port=config.auto_recovery_port,
            pg_version=pg_version,
            pg_ctl=pg_ctl,
        )
    else:
        port = args.port
        if port is None:
            port = config.manual_recovery_port
        target = select_recovery_target(
            target_name=args.target_name,
            target_tli=args.target_tli,
            target_time=args.target_time,
            target_xid=args.target_xid,
        )
        if target is not None:
            checker = {
                "--target-tli": check_tli,
                "--target-time": check_target_time,
                "--target-xid": check_positive,
            }.get(target.option)
            if checker:
                _check_parameter(checker, target.value, target.option)
        session = RecoverySession(
            mode=mode,
            app_name=args.app_name,
            service_user=config.service_user,
            backup_id=args.backup_name,
            recovery_path=os.path.join(config.manual_recovery_path, args.backup_name),
            port=_check_parameter(check_port, port, "port"),
            pg_version=pg_version,
            pg_ctl=pg_ctl,
            target=target,
        )

    output.debug("RECOVERY_APPNAME:     %s", session.app_name)
    output.debug("RECOVERY_BACKUP_NAME: %s", session.backup_id)
    output.debug("RECOVERY_PATH:        %s", session.recovery_path)
    output.debug("RECOVERY_PORT:        %s", session.port)
    output.debug("RECOVERY_TARGET:      %s", session.target)
    return session


def list_backups(session, config, barman=None):
    """
    Relay the output of ``barman list-backup --minimal``

    :param RecoverySession session: the parameters of the run
    :param barman_recover.config.Config config: the configuration
    :param BarmanCli|None barman: the barman wrapper
    :raises ListBackupFailed: if barman returns a non zero exit code,
        which becomes the exit code of barman-recover
    """
    if barman is None:
        barman = BarmanCli(config.barman_command)
    ret = barman.list_backup(session.app_name)
    # stdout is relayed whatever the exit code
    output.result("list_backup", session.app_name, barman.out)
    if ret != 0:
        raise ListBackupFailed(
            "barman list-backup failed with exit code: %s%s"
            % (ret, ": %s" % barman.err if barman.err else ""),
            exit_code=ret if ret > 0 else STATE_CRITICAL,
        )


class RecoveryConfigRewriter(object):
    """
    Rewrite the postgresql.conf of a recovered backup so that the recovery
    instance doesn't collide with any other PostgreSQL instance
    """

    # Options that are removed from the configuration file
    OPTIONS_TO_DROP = ("unix_socket_directories", "log_directory")

    # regexp matching a single setting in Postgres configuration file,
    # the equal sign between name and value is optional
    SETTING_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_.]*)(?:\s*=|\s+)")

    def __init__(self, port, data_directory, socket_directory):
        """
        :param int port: the port of the recovery instance
        :param str data_directory: the recovery data directory
        :param str socket_directory: the directory of the unix socket
        """
        self.port = port
        self.data_directory = data_directory
        self.socket_directory = socket_directory

    def replacements(self):
        """
        The settings which are replaced, in the order they are appended
        when they are missing from the file

        :rtype: collections.OrderedDict
        """
        return collections.OrderedDict(
            [
                ("port", "port = '%s'\n" % self.port),
                ("data_directory", "data_directory = '%s'\n" % self.data_directory),
            ]
        )

    def socket_line(self):
        """
        The unix_socket_directories setting appended to the file
        """
        return "unix_socket_directories = '%s'\n" % self.socket_directory

    def rewrite_lines(self, lines, filename="postgresql.conf"):
        """
        Rewrite the lines of a configuration file

        :param list[str] lines: the original lines
        :param str filename: the file name reported in the changes
        :return tuple[list[str],list[Assertion]]: the new lines and the list
            of changes
        """
        replacements = self.replacements()
        replaced = set()
        new_lines = []
        changes = []
        for l_number, line in enumerate(lines):
            rm = self.SETTING_RE.match(line)
            if rm:
                key = rm.group(1).lower()
                if key in self.OPTIONS_TO_DROP:
                    changes.append(Assertion(filename, l_number, key, None))
                    continue
                if key in replacements:
                    # Only the first occurrence survives
                    if key in replaced:
                        changes.append(Assertion(filename, l_number, key, None))
                        continue
                    replaced.add(key)
                    new_lines.append(replacements[key])
                    changes.append(
                        Assertion(filename, l_number, key, replacements[key].strip())
                    )
                    continue
            new_lines.append(line)
        # Ensure we have end of line character at the end of the file
        # before adding new lines
        if new_lines and not new_lines[-1].endswith("\n"):
            new_lines[-1] += "\n"
        for key, value in replacements.items():
            if key not in replaced:
                new_lines.append(value)
                changes.append(Assertion(filename, None, key, value.strip()))
        socket_line = self.socket_line()
        new_lines.append(socket_line)
        changes.append(
            Assertion(filename, None, "unix_socket_directories", socket_line.strip())
        )
        return new_lines, changes

    def rewrite(self, filename):
        """
        Rewrite the given PostgreSQL configuration file in place,
        preserving its permissions.

        :param str filename: the PostgreSQL configuration file
        :return list[Assertion]: the changes
        :raises ConfigRewriteException: on I/O errors
        """
        orig_filename = "%s.config_rewrite.old" % filename
        try:
            with open(filename, "r", encoding="utf-8", errors="surrogateescape") as f:
                content = f.readlines()
            new_lines, changes = self.rewrite_lines(
                content, os.path.basename(filename)
            )
            # Keep the original file to preserve permissions
            shutil.move(filename, orig_filename)
            with open(filename, "w", encoding="utf-8", errors="surrogateescape") as f:
                f.writelines(new_lines)
            shutil.copymode(orig_filename, filename)
            os.unlink(orig_filename)
        except (OSError, IOError) as e:
            raise ConfigRewriteException(
                "failed to rewrite %s with path %s and port %s: %s"
                % (filename, self.data_directory, self.port, force_str(e))
            )
        return changes


class RecoveryExecutor(object):
    """
    Run the recovery pipeline: teardown of the previous instance, barman
    recover, configuration rewrite and startup of the recovery instance.

    There is no rollback: when a step fails after the recovery path has
    been deleted, the directory stays absent until the next run.
    """

    def __init__(self, session, config, barman=None, pg_ctl=None):
        """
        :param RecoverySession session: the parameters of the run
        :param barman_recover.config.Config config: the configuration
        :param BarmanCli|None barman: the barman wrapper
        :param PgCtl|None pg_ctl: the pg_ctl wrapper
        """
        if session.mode not in (MODE_AUTO, MODE_MANUAL):
            raise UnknownRecoveryMode("unknown recovery_mode %s" % session.mode)
        self.session = session
        self.config = config
        self.barman = barman or BarmanCli(config.barman_command)
        self.pg_ctl = pg_ctl or PgCtl(session.pg_ctl)
        self.instance = RecoveryInstance(session, config, self.pg_ctl)

    def recover(self):
        """
        Execute every step of the recovery, in order

        :rtype: barman_recover.postgres.HealthCheck
        """
        self.stop_recovery()
        self.delete_recovery()
        self.start_barman_recovery()
        self.modify_recovery_config()
        return self.start_recovery_db()

    def stop_recovery(self):
        """
        Stop any instance running on the recovery path
        """
        output.debug("Function: stop_recovery")
        self.instance.stop()

    def delete_recovery(self):
        """
        Remove the recovery path
        """
        output.debug("Function: delete_recovery")
        if fs.delete_if_exists(self.session.recovery_path):
            output.info("RECOVERY_PATH: %s deleted", self.session.recovery_path)

    def start_barman_recovery(self):
        """
        Materialize the backup in the recovery path with barman recover
        """
        output.debug("Function: start_barman_recovery")
        fs.create_dir_if_not_exists(self.session.recovery_path)
        args = BarmanCli.build_recover_args(
            self.session.app_name,
            self.session.backup_id,
            self.session.recovery_path,
            self.session.target,
        )
        try:
            ret = self.barman.recover(
                self.session.app_name,
                self.session.backup_id,
                self.session.recovery_path,
                self.session.target,
                log_file=self.config.barman_log,
            )
        except (OSError, IOError) as e:
            raise RecoveryFailed(
                "barman recover: %s: %s"
                % (full_command_quote(self.barman.cmd, args), force_str(e))
            )
        if ret != 0:
            raise RecoveryFailed(
                "barman recover failed with exit code %s: %s (see %s)"
                % (
                    ret,
                    full_command_quote(self.barman.cmd, args),
                    self.config.barman_log,
                )
            )
        output.info(
            "backup %s of %s recovered in %s",
            self.session.backup_id,
            self.session.app_name,
            self.session.recovery_path,
        )

    def modify_recovery_config(self):
        """
        Rewrite the postgresql.conf of the recovered backup

        :return list[Assertion]: the changes
        """
        output.debug("Function: modify_recovery_config")
        output.debug("RECOVERY_PORT: %s", self.session.port)
        rewriter = RecoveryConfigRewriter(
            self.session.port,
            self.session.recovery_path,
            self.config.socket_directory,
        )
        changes = rewriter.rewrite(
            os.path.join(self.session.recovery_path, "postgresql.conf")
        )
        self._log_changes(changes)
        return changes

    def _log_changes(self, changes):
        """
        Append the changes of the configuration rewrite to the
        configured log file
        """
        try:
            with open(self.config.config_rewrite_log, "a") as log:
                for change in changes:
                    if change.value is None:
                        action = "removed"
                    else:
                        action = "set %s" % change.value
                    line = "line %s" % change.line if change.line is not None else "end"
                    log.write(
                        "%s %s (%s): %s\n" % (change.filename, line, change.key, action)
                    )
        except (OSError, IOError) as e:
            _logger.warning(
                "Unable to write the config rewrite log %s: %s",
                self.config.config_rewrite_log,
                e,
            )

    def start_recovery_db(self):
        """
        Start the recovery instance and check it is healthy

        :rtype: barman_recover.postgres.HealthCheck
        :raises StartupFailed: if PostgreSQL fails to start
        """
        output.debug("Function: start_recovery_db")
        ret = self.instance.start()
        ready = self.instance.wait_until_ready()
        health = self.instance.check_health(ready)

        if health.fatal_lines:
            raise StartupFailed(
                "PostgreSQL failed to start with message: %s" % health.log_content
            )
        if ret != 0:
            raise StartupFailed("PostgreSQL failed to start with exit code: %s" % ret)
        if not ready:
            output.warning(
                "PostgreSQL on %s has not confirmed it is ready after %s seconds",
                self.session.recovery_path,
                self.config.startup_timeout,
            )

        if self.session.mode not in (MODE_AUTO, MODE_MANUAL):
            raise UnknownRecoveryMode("unknown recovery_mode %s" % self.session.mode)
        output.result(
            "recovery",
            self.session,
            self.pg_ctl.stop_command_line(self.session.recovery_path),
        )
        return health
