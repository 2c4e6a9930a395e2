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

#: Exit code for a successful run
STATE_OK = 0

#: Exit code for an operational failure (stop, delete, recover, start)
STATE_CRITICAL = 2

#: Exit code for usage or environment misconfiguration
STATE_UNKNOWN = 3


class BarmanRecoverException(Exception):
    """
    The base class of all other barman-recover exceptions
    """

    #: The process exit code associated with this exception
    exit_code = STATE_CRITICAL

    def __init__(self, *args, **kwargs):
        exit_code = kwargs.pop("exit_code", None)
        if kwargs:
            raise TypeError(
                "%s() got an unexpected keyword argument %r"
                % (self.__class__.__name__, kwargs.popitem()[0])
            )
        super(BarmanRecoverException, self).__init__(*args)
        if exit_code is not None:
            self.exit_code = exit_code


class CriticalStateException(BarmanRecoverException):
    """
    Base exception for the failure of an operational step against
    real infrastructure
    """

    exit_code = STATE_CRITICAL


class UnknownStateException(BarmanRecoverException):
    """
    Base exception for usage or environment preconditions that failed
    before any destructive action was taken
    """

    exit_code = STATE_UNKNOWN


class CommandException(BarmanRecoverException):
    """
    Base exception for all the errors related to
    the execution of a Command.
    """


class CommandFailedException(CommandException):
    """
    Exception representing a failed command
    """


class ConfigurationException(UnknownStateException):
    """
    Error in the barman-recover configuration
    """


class ParameterException(UnknownStateException):
    """
    Invalid or missing command line parameter
    """


class PgCtlNotFound(UnknownStateException):
    """
    The pg_ctl binary is missing or not executable
    """


class PostgresVersionNotFound(UnknownStateException):
    """
    The PostgreSQL major version cannot be determined
    """


class UnknownRecoveryMode(UnknownStateException):
    """
    The requested recovery mode is not supported
    """


class ListBackupFailed(CriticalStateException):
    """
    The barman list-backup command has failed
    """


class LatestBackupException(CriticalStateException):
    """
    The latest backup could not be retrieved from barman
    """


class TeardownException(CriticalStateException):
    """
    A running recovery instance could not be stopped
    """


class FsOperationFailed(CriticalStateException):
    """
    Exception which represents a failed execution of a command on FS
    """


class DeletionRefused(FsOperationFailed):
    """
    The recovery path is not safe to delete
    """


class RecoveryFailed(CriticalStateException):
    """
    The barman recover command has failed
    """


class ConfigRewriteException(CriticalStateException):
    """
    The recovered postgresql.conf could not be rewritten
    """


class StartupFailed(CriticalStateException):
    """
    The recovery instance failed to start
    """
