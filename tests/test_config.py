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

import logging

import mock
import pytest

from barman_recover import config as config_module
from barman_recover.config import (
    Config,
    parse_absolute_path,
    parse_level,
    parse_pg_ctl_template,
)
from barman_recover.exceptions import ConfigurationException
from testing_helpers import build_config


# noinspection PyMethodMayBeStatic
class TestConfig(object):
    def test_defaults(self):
        config = build_config()
        assert config.auto_recovery_path == "/var/lib/barman/auto_recovery"
        assert config.manual_recovery_path == "/var/lib/barman/recovery"
        assert config.auto_recovery_port == 5433
        assert config.manual_recovery_port == 5434
        assert config.auto_recovery_appname == "composer"
        assert config.barman_command == "barman"
        assert config.barman_log == "/tmp/pitr-recovery.log"
        assert config.recovery_log == "/tmp/recover.log"
        assert config.socket_directory == "/tmp"
        assert config.service_user == "barman"
        assert config.startup_timeout == 10
        assert config.stop_timeout == 10
        assert config.log_file is None
        assert config.log_level == logging.WARNING

    def test_options(self):
        config = build_config(
            {
                "auto_recovery_path": "/srv/verify/",
                "auto_recovery_port": "6543",
                "auto_recovery_appname": "'pg-main'",
                "pg_ctl_template": "/usr/lib/postgresql/{pg_version}/bin/pg_ctl",
                "startup_timeout": "30",
                "log_level": "debug",
            }
        )
        assert config.auto_recovery_path == "/srv/verify"
        assert config.auto_recovery_port == 6543
        # Quotes are removed
        assert config.auto_recovery_appname == "pg-main"
        assert config.pg_ctl_path("16") == "/usr/lib/postgresql/16/bin/pg_ctl"
        assert config.startup_timeout == 30
        assert config.log_level == logging.DEBUG

    @mock.patch("barman_recover.config.output")
    def test_invalid_values(self, output_mock):
        config = build_config(
            {
                "auto_recovery_port": "70000",
                "manual_recovery_path": "relative/path",
                "stop_timeout": "never",
            }
        )
        assert config.auto_recovery_port == 5433
        assert config.manual_recovery_path == "/var/lib/barman/recovery"
        assert config.stop_timeout == 10
        assert output_mock.warning.call_count == 3

    @mock.patch("barman_recover.config.output")
    def test_unknown_option(self, output_mock):
        build_config({"recovery_colour": "blue"})
        output_mock.warning.assert_called_once_with(
            "Ignoring unknown configuration option '%s' in %s",
            "recovery_colour",
            mock.ANY,
        )

    def test_pg_ctl_path(self):
        config = build_config()
        assert config.pg_ctl_path("9.6") == "/usr/pgsql-9.6/bin/pg_ctl"
        assert config.pg_ctl_path("14") == "/usr/pgsql-14/bin/pg_ctl"

    def test_missing_explicit_file(self, tmpdir):
        with pytest.raises(ConfigurationException) as exc_info:
            Config(tmpdir.join("missing.conf").strpath)
        assert exc_info.value.exit_code == 3

    def test_explicit_file(self, tmpdir):
        conf = tmpdir.join("barman-recover.conf")
        conf.write("[barman-recover]\nauto_recovery_appname = warehouse\n")
        config = Config(conf.strpath)
        assert config.config_file == conf.strpath
        assert config.auto_recovery_appname == "warehouse"

    def test_default_files(self, tmpdir):
        conf = tmpdir.join("barman-recover.conf")
        conf.write("[barman-recover]\nservice_user = postgres\n")
        missing = tmpdir.join("missing.conf")
        with mock.patch.object(
            Config, "CONFIG_FILES", [missing.strpath, conf.strpath]
        ):
            config = Config()
        assert config.config_file == conf.strpath
        assert config.service_user == "postgres"

    def test_no_default_files(self, tmpdir):
        with mock.patch.object(
            Config, "CONFIG_FILES", [tmpdir.join("missing.conf").strpath]
        ):
            config = Config()
        assert config.config_file is None
        assert config.auto_recovery_port == config_module.DEFAULT_AUTO_RECOVERY_PORT

    def test_to_dict(self):
        values = build_config({"service_user": "postgres"}).to_dict()
        assert values["service_user"] == "postgres"
        assert set(values) == set(Config.DEFAULTS)


# noinspection PyMethodMayBeStatic
class TestParsers(object):
    def test_parse_pg_ctl_template(self):
        template = "/opt/pg{pg_version}/bin/pg_ctl"
        assert parse_pg_ctl_template(template) == template
        with pytest.raises(ValueError):
            parse_pg_ctl_template("/usr/bin/pg_ctl")
        with pytest.raises(ValueError):
            parse_pg_ctl_template("pgsql-{pg_version}/bin/pg_ctl")

    def test_parse_absolute_path(self):
        assert parse_absolute_path("/var/lib//barman/") == "/var/lib/barman"
        with pytest.raises(ValueError):
            parse_absolute_path("barman")

    def test_parse_level(self):
        assert parse_level("INFO") == logging.INFO
        with pytest.raises(ValueError):
            parse_level("LOUD")
