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

from barman_recover import output
from barman_recover.exceptions import STATE_CRITICAL


@pytest.fixture(autouse=True)
def reset_output():
    """
    Restore a quiet console writer and a clean error status around every test
    """
    output._writer = output.ConsoleOutputWriter()
    output.error_occurred = False
    output.error_exit_code = STATE_CRITICAL
    yield
    output._writer = output.ConsoleOutputWriter()
    output.error_occurred = False
    output.error_exit_code = STATE_CRITICAL


@pytest.fixture(autouse=True)
def reset_logging():
    """
    Remove the handlers installed by configure_logging
    """
    handlers = list(logging.root.handlers)
    level = logging.root.level
    yield
    for handler in logging.root.handlers[:]:
        if handler not in handlers:
            logging.root.removeHandler(handler)
    logging.root.setLevel(level)


@pytest.fixture
def which():
    """
    Resolve every executable to itself, so that commands can be built
    without the real binaries being installed
    """
    with mock.patch("barman_recover.utils.which") as which:
        which.side_effect = lambda cmd, path=None: cmd
        yield which
