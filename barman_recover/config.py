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
This module is responsible for all the things related to
barman-recover configuration, such as parsing configuration file.
"""

import logging
import os
import re
from configparser import ConfigParser, NoOptionError

from barman_recover import output
from barman_recover.exceptions import ConfigurationException
from barman_recover.utils import check_port, check_positive, parse_log_level

_logger = logging.getLogger(__name__)

#: Name of the configuration section read by barman-recover
CONFIG_SECTION = "barman-recover"

DEFAULT_AUTO_RECOVERY_PATH = "/var/lib/barman/auto_recovery"
DEFAULT_MANUAL_RECOVERY_PATH = "/var/lib/barman/recovery"
DEFAULT_AUTO_RECOVERY_PORT = 5433
DEFAULT_MANUAL_RECOVERY_PORT = 5434
DEFAULT_AUTO_RECOVERY_APPNAME = "composer"
DEFAULT_BARMAN_COMMAND = "barman"
DEFAULT_BARMAN_LOG = "/tmp/pitr-recovery.log"
DEFAULT_RECOVERY_LOG = "/tmp/recover.log"
DEFAULT_CONFIG_REWRITE_LOG = "/tmp/pitr-config-rewrite.log"
DEFAULT_PG_CTL_TEMPLATE = "/usr/pgsql-{pg_version}/bin/pg_ctl"
DEFAULT_SOCKET_DIRECTORY = "/tmp"
DEFAULT_SERVICE_USER = "barman"
DEFAULT_STARTUP_TIMEOUT = 10
DEFAULT_STOP_TIMEOUT = 10
DEFAULT_LOG_LEVEL = logging.WARNING
DEFAULT_LOG_FORMAT = "%(asctime)s [%(process)s] %(name)s %(levelname)s: %(message)s"


def parse_pg_ctl_template(value):
    """
    Check that the pg_ctl template is an absolute path
    which contains the ``{pg_version}`` placeholder

    :param str value: the template to evaluate
    """
    if "{pg_version}" not in value:
        raise ValueError("missing '{pg_version}' placeholder")
    if not os.path.isabs(value.format(pg_version="0")):
        raise ValueError("'%s' is not an absolute path" % value)
    return value


def parse_absolute_path(value):
    """
    Check that the value is an absolute path

    :param str value: the path to evaluate
    """
    if not os.path.isabs(value):
        raise ValueError("'%s' is not an absolute path" % value)
    return os.path.normpath(value)


def parse_level(value):
    """
    Parse a log level, raising ValueError if it is unknown

    :param str value: the log level name or number
    """
    level = parse_log_level(value)
    if level is None:
        raise ValueError("unknown log level '%s'" % value)
    return level


class Config(object):
    """This class represents the barman-recover configuration.

    Default configuration files are ~/.barman-recover.conf,
    /etc/barman-recover.conf and /etc/barman/barman-recover.conf.
    None of them is required: every option has a built-in default.
    """

    CONFIG_FILES = [
        "~/.barman-recover.conf",
        "/etc/barman-recover.conf",
        "/etc/barman/barman-recover.conf",
    ]

    DEFAULTS = {
        "auto_recovery_path": DEFAULT_AUTO_RECOVERY_PATH,
        "manual_recovery_path": DEFAULT_MANUAL_RECOVERY_PATH,
        "auto_recovery_port": DEFAULT_AUTO_RECOVERY_PORT,
        "manual_recovery_port": DEFAULT_MANUAL_RECOVERY_PORT,
        "auto_recovery_appname": DEFAULT_AUTO_RECOVERY_APPNAME,
        "barman_command": DEFAULT_BARMAN_COMMAND,
        "barman_log": DEFAULT_BARMAN_LOG,
        "recovery_log": DEFAULT_RECOVERY_LOG,
        "config_rewrite_log": DEFAULT_CONFIG_REWRITE_LOG,
        "pg_ctl_template": DEFAULT_PG_CTL_TEMPLATE,
        "socket_directory": DEFAULT_SOCKET_DIRECTORY,
        "service_user": DEFAULT_SERVICE_USER,
        "startup_timeout": DEFAULT_STARTUP_TIMEOUT,
        "stop_timeout": DEFAULT_STOP_TIMEOUT,
        "log_file": None,
        "log_level": DEFAULT_LOG_LEVEL,
        "log_format": DEFAULT_LOG_FORMAT,
    }

    PARSERS = {
        "auto_recovery_path": parse_absolute_path,
        "manual_recovery_path": parse_absolute_path,
        "auto_recovery_port": check_port,
        "manual_recovery_port": check_port,
        "barman_log": parse_absolute_path,
        "recovery_log": parse_absolute_path,
        "config_rewrite_log": parse_absolute_path,
        "pg_ctl_template": parse_pg_ctl_template,
        "socket_directory": parse_absolute_path,
        "startup_timeout": check_positive,
        "stop_timeout": check_positive,
        "log_level": parse_level,
    }

    _QUOTE_RE = re.compile(r"""^(["'])(.*)\1$""")

    def __init__(self, filename=None):
        #  Keep the lenient behaviour of older ConfigParser versions
        #  with duplicated sections and options.
        self._config = ConfigParser(strict=False, interpolation=None)
        if filename:
            # If it is a file descriptor
            if hasattr(filename, "read"):
                self._config.read_file(filename)
            # If it is a path
            else:
                filename = os.path.expanduser(filename)
                # check for the existence of the user defined file
                if not os.path.exists(filename):
                    raise ConfigurationException(
                        "Configuration file '%s' does not exist" % filename
                    )
                self._config.read(filename)
        else:
            # Check for the presence of configuration files
            # inside default directories
            for path in self.CONFIG_FILES:
                full_path = os.path.expanduser(path)
                if os.path.exists(full_path) and full_path in self._config.read(
                    full_path
                ):
                    filename = full_path
                    break
        self.config_file = filename
        self._parse_config()

    def get(self, section, option, none_value=None):
        """Method to get the value from a given section from
        barman-recover configuration
        """
        if not self._config.has_section(section):
            return None
        try:
            value = self._config.get(section, option)
            if value == "None":
                value = none_value
            if value is not None:
                value = self._QUOTE_RE.sub(lambda m: m.group(2), value)
            return value
        except NoOptionError:
            return None

    def _parse_config(self):
        """
        This method parses the [barman-recover] section, applying
        the defaults for every missing option
        """
        for key, default in self.DEFAULTS.items():
            setattr(self, key, self.invoke_parser(key, default))
        if self._config.has_section(CONFIG_SECTION):
            for key in self._config.options(CONFIG_SECTION):
                if key not in self.DEFAULTS:
                    output.warning(
                        "Ignoring unknown configuration option '%s' in %s",
                        key,
                        self.config_file,
                    )

    def invoke_parser(self, key, default):
        """
        Read the value of a configuration option, parsing it with
        the parser registered in the PARSERS map.

        Invalid values are reported as a warning and the default
        value is used instead.

        :param str key: the name of the configuration option
        :param default: the value to use when the option is missing
            or invalid
        :return: the parsed value of a configuration option
        """
        new_value = self.get(CONFIG_SECTION, key)
        if new_value is None:
            return default
        if key not in self.PARSERS:
            return new_value
        parser = self.PARSERS[key]
        # noinspection PyBroadException
        try:
            return parser(new_value)
        except Exception as e:
            output.warning(
                "Ignoring invalid configuration value '%s' for key %s in %s: %s",
                new_value,
                key,
                self.config_file,
                e,
            )
            return default

    def pg_ctl_path(self, pg_version):
        """
        Build the path of the pg_ctl binary for a PostgreSQL major version

        :param str pg_version: the PostgreSQL major version
        :rtype: str
        """
        return self.pg_ctl_template.format(pg_version=pg_version)

    def to_dict(self):
        """
        Return the effective configuration as a dictionary
        """
        return dict((key, getattr(self, key)) for key in sorted(self.DEFAULTS))
