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
This module implements the interface with the command line and the logger.
"""

import logging
import os
import sys
from argparse import SUPPRESS, ArgumentParser, RawDescriptionHelpFormatter

import barman_recover
from barman_recover import output
from barman_recover.config import Config
from barman_recover.exceptions import STATE_UNKNOWN, BarmanRecoverException
from barman_recover.recovery_executor import (
    MODE_AUTO,
    MODE_LIST,
    MODE_MANUAL,
    RecoveryExecutor,
    list_backups,
    resolve_session,
)
from barman_recover.utils import (
    check_backup_id,
    check_port,
    check_positive,
    check_target_time,
    check_tli,
    configure_logging,
    force_str,
    get_log_levels,
)

try:
    import argcomplete
except ImportError:
    argcomplete = None

_logger = logging.getLogger(__name__)

#: Environment variable pointing to an explicit configuration file
CONFIG_FILE_ENV = "BARMAN_RECOVER_CONFIG_FILE"

EPILOG = """\
examples:
  barman-recover -l -a main
  barman-recover -r
  barman-recover -m -a main -b 20240101T000000 -p 5434 -T '2024-01-01 12:00:00'

Only one recovery target is used, with the priority:
  --target-name, --target-tli, --target-time, --target-xid
"""


class RecoverArgumentParser(ArgumentParser):
    """
    Argument parser reporting usage errors with the UNKNOWN exit status
    """

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(STATE_UNKNOWN, "%s: error: %s\n" % (self.prog, message))


def build_parser():
    """
    Build the command line parser

    :rtype: RecoverArgumentParser
    """
    p = RecoverArgumentParser(
        prog="barman-recover",
        description="Recover a Barman backup in a throwaway PostgreSQL "
        "instance to verify it, automatically or on demand.",
        epilog=EPILOG,
        formatter_class=RawDescriptionHelpFormatter,
    )
    p.add_argument(
        "-V",
        "--version",
        action="version",
        version="%%(prog)s %s" % barman_recover.__version__,
    )
    p.add_argument(
        "-c",
        "--config",
        help="uses a configuration file "
        "(defaults: %s)" % ", ".join(Config.CONFIG_FILES),
        default=SUPPRESS,
    )
    p.add_argument(
        "-v",
        "--verbose",
        help="increase output verbosity",
        action="count",
        default=0,
    )
    p.add_argument("-d", "--debug", help="debug output", action="store_true")
    p.add_argument(
        "--log-level",
        help="override the default log level",
        type=str.upper,
        choices=list(get_log_levels()),
    )
    p.add_argument(
        "--format",
        help="output format",
        choices=sorted(output.AVAILABLE_WRITERS.keys()),
        default=output.DEFAULT_WRITER,
    )

    modes = p.add_argument_group("recovery modes")
    mode = modes.add_mutually_exclusive_group()
    mode.add_argument(
        "-l",
        "--list-backup",
        help="list the backups of an application",
        dest="mode",
        action="store_const",
        const=MODE_LIST,
    )
    mode.add_argument(
        "-r",
        "--auto",
        "--automated",
        "--robot",
        help="recover the latest backup of the automatic recovery "
        "application with the configured path and port",
        dest="mode",
        action="store_const",
        const=MODE_AUTO,
    )
    mode.add_argument(
        "-m",
        "--manual",
        help="recover a backup of an application in its own data directory "
        "(requires --app-name and --backup-name)",
        dest="mode",
        action="store_const",
        const=MODE_MANUAL,
    )

    params = p.add_argument_group("recovery parameters")
    params.add_argument(
        "-a",
        "--app-name",
        "--appname",
        help="name of the barman server (application)",
        dest="app_name",
    )
    params.add_argument(
        "-b",
        "--backup-name",
        help="id of the backup to recover",
        dest="backup_name",
        type=check_backup_id,
    )
    params.add_argument(
        "-p",
        "--port",
        help="port of the recovery instance in manual mode",
        type=check_port,
    )
    params.add_argument(
        "-P",
        "--pg-version",
        help="PostgreSQL major version of the backup "
        "(default: detected from psql --version)",
        dest="pg_version",
    )

    targets = p.add_argument_group("recovery targets")
    targets.add_argument(
        "-n", "--target-name", help="restore point name", dest="target_name"
    )
    targets.add_argument(
        "-t",
        "--target-tli",
        help="target timeline: a positive number, 'current' or 'latest'",
        dest="target_tli",
        type=check_tli,
    )
    targets.add_argument(
        "-T",
        "--target-time",
        help="target time, e.g. '2024-01-01 12:00:00'",
        dest="target_time",
        type=check_target_time,
    )
    targets.add_argument(
        "-x",
        "--target-xid",
        help="target transaction id",
        dest="target_xid",
        type=check_positive,
    )
    return p


def global_config(args):
    """
    Set the configuration, the logging and the output writer

    :param argparse.Namespace args: the command line arguments
    :rtype: barman_recover.config.Config
    """
    # Configure output first so configuration warnings honour --format
    output.set_output_writer(args.format, debug=args.debug, quiet=not args.verbose)

    if hasattr(args, "config"):
        filename = args.config
    else:
        filename = os.environ.get(CONFIG_FILE_ENV)
    config = Config(filename)
    barman_recover.__config__ = config

    # configure logging
    if args.log_level:
        log_level = logging.getLevelName(args.log_level)
    elif args.debug:
        log_level = logging.DEBUG
    elif args.verbose:
        log_level = logging.INFO
    else:
        log_level = config.log_level
    configure_logging(config.log_file, log_level, config.log_format)

    _logger.debug(
        "Initialised barman-recover version %s (config: %s, args: %s)",
        barman_recover.__version__,
        config.config_file,
        vars(args),
    )
    _logger.debug("Effective configuration: %s", config.to_dict())
    return config


def run(args, config):
    """
    Execute the requested mode

    :param argparse.Namespace args: the command line arguments
    :param barman_recover.config.Config config: the configuration
    """
    session = resolve_session(args, config)
    if session.mode == MODE_LIST:
        list_backups(session, config)
    else:
        RecoveryExecutor(session, config).recover()


def main(args=None):
    """
    The main method of barman-recover

    :param list[str]|None args: the command line arguments, defaults to
        sys.argv
    """
    p = build_parser()
    if argcomplete:
        argcomplete.autocomplete(p)
    if args is None:
        args = sys.argv[1:]
    if not args:
        p.print_help()
        sys.exit(STATE_UNKNOWN)
    args = p.parse_args(args)
    if args.mode is None:
        p.error(
            "one of the arguments -l/--list-backup -r/--auto -m/--manual is required"
        )

    # noinspection PyBroadException
    try:
        config = global_config(args)
        run(args, config)
    except BarmanRecoverException as e:
        output.error(force_str(e), exit_code=e.exit_code)
    except KeyboardInterrupt:
        msg = "Process interrupted by user (KeyboardInterrupt)"
        output.error(msg)
    except Exception as e:
        msg = "%s\nSee log file for more details." % e
        output.exception(msg)

    # cleanup output API and exit honoring output.error_occurred and
    # output.error_exit_code
    output.close_and_exit()


if __name__ == "__main__":
    main()
