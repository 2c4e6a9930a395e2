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

import errno
import select
from subprocess import DEVNULL, PIPE

import mock
import pytest

from barman_recover import command_wrappers
from barman_recover.command_wrappers import (
    BarmanCli,
    PgCtl,
    Pgrep,
    Psql,
    StreamLineProcessor,
    ere_quote,
    full_command_quote,
    shell_quote,
)
from barman_recover.exceptions import CommandFailedException
from barman_recover.recovery_executor import RecoveryTarget

pytestmark = pytest.mark.usefixtures("which")


def _mock_pipe(popen, pipe_processor_loop, ret=0, out="", err=""):
    pipe = popen.return_value
    pipe.returncode = ret

    # noinspection PyProtectedMember
    def ppl(processors):
        for processor in processors:
            if processor.fileno() == pipe.stdout.fileno.return_value:
                for line in out.split("\n"):
                    processor._handler(line)
            if processor.fileno() == pipe.stderr.fileno.return_value:
                for line in err.split("\n"):
                    processor._handler(line)

    pipe_processor_loop.side_effect = ppl
    return pipe


def _popen_call(cmd):
    return mock.call(
        cmd,
        stdin=DEVNULL,
        stdout=PIPE,
        stderr=PIPE,
        preexec_fn=mock.ANY,
        close_fds=True,
    )


# noinspection PyMethodMayBeStatic
@mock.patch("barman_recover.command_wrappers.Command.pipe_processor_loop")
@mock.patch("barman_recover.command_wrappers.subprocess.Popen")
class TestCommand(object):
    def test_simple_invocation(self, popen, pipe_processor_loop):
        pipe = _mock_pipe(popen, pipe_processor_loop, 0, "out", "err")

        cmd = command_wrappers.Command("command")
        result = cmd()

        assert popen.call_args == _popen_call(["command"])
        assert result == 0
        assert cmd.ret == 0
        assert cmd.out == "out"
        assert cmd.err == "err"

    def test_multiline_output(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop, 0, "line1\nline2\n", "err1\n")

        cmd = command_wrappers.Command("command")
        cmd()

        # The trailing newline is preserved
        assert cmd.out == "line1\nline2\n"
        assert cmd.err == "err1\n"

    def test_failed_invocation(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop, 1, "out", "err")

        cmd = command_wrappers.Command("command")
        assert cmd() == 1
        assert cmd.ret == 1

    def test_check_failed_invocation(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop, 1, "out", "err")

        cmd = command_wrappers.Command("command", check=True)
        with pytest.raises(CommandFailedException) as excinfo:
            cmd()
        assert excinfo.value.args[0]["ret"] == 1
        assert excinfo.value.args[0]["out"] == "out"
        assert excinfo.value.args[0]["err"] == "err"

    def test_args_invocation(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop)

        cmd = command_wrappers.Command("command", args=["one", "two"])
        cmd("three")

        assert popen.call_args == _popen_call(["command", "one", "two", "three"])

    def test_execute_handlers(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop, 0, "line1\nline2", "err1")
        out_list = []
        err_list = []

        cmd = command_wrappers.Command(
            "command", out_handler=out_list.append, err_handler=err_list.append
        )
        result = cmd.execute()

        assert result == 0
        assert out_list == ["line1", "line2"]
        assert err_list == ["err1"]
        assert cmd.out is None
        assert cmd.err is None

    def test_execute_logging(self, popen, pipe_processor_loop, caplog):
        _mock_pipe(popen, pipe_processor_loop, 0, "out line", "err line")
        caplog.set_level("INFO")

        command_wrappers.Command("command").execute()

        assert "out line" in caplog.text
        assert "err line" in caplog.text
        assert ("Command", 30, "err line") in caplog.record_tuples

    def test_unexpected_keyword(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop)

        with pytest.raises(TypeError):
            command_wrappers.Command("command").execute(retries=3)

    def test_not_in_path(self, popen, pipe_processor_loop, which):
        which.side_effect = None
        which.return_value = None

        with pytest.raises(CommandFailedException) as excinfo:
            command_wrappers.Command("missing")
        which.assert_called_once_with("missing")
        assert "missing not in PATH" in str(excinfo.value)
        assert not popen.called

    def test_command_line(self, popen, pipe_processor_loop):
        cmd = command_wrappers.Command("pg_ctl", args=["-D", "/data dir"])
        assert cmd.command_line("stop") == "pg_ctl '-D' '/data dir' 'stop'"

    def test_file_handler(self, popen, pipe_processor_loop, tmpdir):
        _mock_pipe(popen, pipe_processor_loop, 0, "out1\nout2\n", "err1\n")
        log = tmpdir.join("command.log")

        with open(log.strpath, "w") as fileobj:
            handler = command_wrappers.Command.make_file_handler(fileobj)
            command_wrappers.Command("command").execute(
                out_handler=handler, err_handler=handler
            )

        assert log.read() == "out1\nout2\nerr1\n"


# noinspection PyMethodMayBeStatic
class TestCommandPipeProcessorLoop(object):
    @mock.patch("barman_recover.command_wrappers.select.select")
    @mock.patch("barman_recover.command_wrappers.os.read")
    def test_ppl(self, read_mock, select_mock):
        # Simulate the two files
        stdout = mock.Mock(name="pipe.stdout")
        stdout.fileno.return_value = 65
        stderr = mock.Mock(name="pipe.stderr")
        stderr.fileno.return_value = 66

        # Recipients for results
        out_list = []
        err_list = []

        # StreamLineProcessors
        out_proc = StreamLineProcessor(stdout, out_list.append)
        err_proc = StreamLineProcessor(stderr, err_list.append)

        # The select call always returns all the streams
        select_mock.side_effect = [
            [[out_proc, err_proc], [], []],
            select.error(errno.EINTR),  # Test interrupted system call
            [[out_proc, err_proc], [], []],
            [[out_proc, err_proc], [], []],
        ]

        # The read calls return out and err interleaved
        # Lines are split in various ways, to test all the code paths
        read_mock.side_effect = [
            "20240102T000000\n2024".encode("utf-8"),
            "WARN".encode("utf-8"),
            "0101T000000".encode("utf-8"),
            "ING\nunreachable\n".encode("utf-8"),
            b"",
            b"",
            Exception,
        ]  # Make sure it terminates

        command_wrappers.Command.pipe_processor_loop([out_proc, err_proc])

        assert out_list == ["20240102T000000", "20240101T000000"]
        assert err_list == ["WARNING", "unreachable", ""]

    @mock.patch("barman_recover.command_wrappers.select.select")
    def test_ppl_select_failure(self, select_mock):
        # Test if select errors are passed through
        select_mock.side_effect = select.error("not good")

        with pytest.raises(select.error):
            command_wrappers.Command.pipe_processor_loop([None])


# noinspection PyMethodMayBeStatic
@mock.patch("barman_recover.command_wrappers.Command.pipe_processor_loop")
@mock.patch("barman_recover.command_wrappers.subprocess.Popen")
class TestBarmanCli(object):
    def test_list_backup(self, popen, pipe_processor_loop):
        _mock_pipe(
            popen, pipe_processor_loop, 0, "20240102T000000\n20240101T000000\n"
        )

        barman = BarmanCli()
        assert barman.list_backup("main") == 0

        assert popen.call_args == _popen_call(
            ["barman", "list-backup", "--minimal", "main"]
        )
        assert barman.out == "20240102T000000\n20240101T000000\n"

    def test_list_backup_failure(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop, 1, "", "ERROR: Unknown server 'x'")

        barman = BarmanCli("/usr/bin/barman")
        assert barman.list_backup("x") == 1
        assert barman.err == "ERROR: Unknown server 'x'"

    def test_build_recover_args(self, popen, pipe_processor_loop):
        assert BarmanCli.build_recover_args("main", "20240101T000000", "/r") == [
            "recover",
            "main",
            "20240101T000000",
            "/r",
        ]
        target = RecoveryTarget("--target-tli", 2)
        assert BarmanCli.build_recover_args(
            "main", "20240101T000000", "/r", target
        ) == ["recover", "main", "20240101T000000", "/r", "--target-tli", "2"]

    def test_recover_log_file(self, popen, pipe_processor_loop, tmpdir):
        _mock_pipe(
            popen,
            pipe_processor_loop,
            0,
            "Starting local restore for server main\n",
            "WARNING: IMPORTANT: You have requested a recovery operation\n",
        )
        log = tmpdir.join("pitr-recovery.log")
        log.write("previous run\n")

        ret = BarmanCli().recover(
            "main",
            "20240101T000000",
            "/var/lib/barman/recovery/20240101T000000",
            RecoveryTarget("--target-name", "before-upgrade"),
            log_file=log.strpath,
        )

        assert ret == 0
        assert popen.call_args == _popen_call(
            [
                "barman",
                "recover",
                "main",
                "20240101T000000",
                "/var/lib/barman/recovery/20240101T000000",
                "--target-name",
                "before-upgrade",
            ]
        )
        # The log is truncated and receives both streams
        assert log.read() == (
            "Starting local restore for server main\n"
            "WARNING: IMPORTANT: You have requested a recovery operation\n"
        )


# noinspection PyMethodMayBeStatic
@mock.patch("barman_recover.command_wrappers.Command.pipe_processor_loop")
@mock.patch("barman_recover.command_wrappers.subprocess.Popen")
class TestPgCtl(object):
    def test_start(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop, 0, "server starting")
        out_list = []

        pg_ctl = PgCtl("/usr/pgsql-14/bin/pg_ctl")
        ret = pg_ctl.start("/data", "/tmp/recover.log", out_handler=out_list.append)

        assert ret == 0
        assert popen.call_args == _popen_call(
            [
                "/usr/pgsql-14/bin/pg_ctl",
                "-D",
                "/data",
                "-l",
                "/tmp/recover.log",
                "start",
            ]
        )
        assert out_list == ["server starting"]

    def test_stop(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop, 1)

        pg_ctl = PgCtl("/usr/pgsql-14/bin/pg_ctl")
        assert pg_ctl.stop("/data") == 1
        assert popen.call_args == _popen_call(
            ["/usr/pgsql-14/bin/pg_ctl", "-D", "/data", "-m", "fast", "stop"]
        )

    def test_stop_command_line(self, popen, pipe_processor_loop):
        pg_ctl = PgCtl("/usr/pgsql-14/bin/pg_ctl")
        assert pg_ctl.stop_command_line("/data") == (
            "/usr/pgsql-14/bin/pg_ctl '-D' '/data' '-m' 'fast' 'stop'"
        )


# noinspection PyMethodMayBeStatic
@mock.patch("barman_recover.command_wrappers.Command.pipe_processor_loop")
@mock.patch("barman_recover.command_wrappers.subprocess.Popen")
class TestPsql(object):
    @pytest.mark.parametrize(
        ("version_output", "expected"),
        [
            ("psql (PostgreSQL) 9.6.24", "9.6"),
            ("psql (PostgreSQL) 14.5", "14"),
            ("psql (PostgreSQL) 16.2 (Ubuntu 16.2-1.pgdg22.04+1)", "16"),
        ],
    )
    def test_get_major_version(
        self, popen, pipe_processor_loop, version_output, expected
    ):
        _mock_pipe(popen, pipe_processor_loop, 0, version_output + "\n")

        assert Psql.get_major_version() == expected
        assert popen.call_args == _popen_call(["psql", "--version"])

    def test_get_major_version_failure(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop, 127, "", "psql: not found")
        assert Psql.get_major_version() is None

    def test_get_major_version_garbage(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop, 0, "psql, the PostgreSQL client")
        assert Psql.get_major_version() is None

    def test_get_major_version_missing(self, popen, pipe_processor_loop, which):
        which.side_effect = None
        which.return_value = None
        assert Psql.get_major_version() is None
        assert not popen.called


# noinspection PyMethodMayBeStatic
@mock.patch("barman_recover.command_wrappers.Command.pipe_processor_loop")
@mock.patch("barman_recover.command_wrappers.subprocess.Popen")
class TestPgrep(object):
    def test_find(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop, 0, "1234\n5678\n")

        pids = Pgrep().find("postgres.+/data( |$)", user="barman")

        assert pids == [1234, 5678]
        assert popen.call_args == _popen_call(
            ["pgrep", "-u", "barman", "-f", "postgres.+/data( |$)"]
        )

    def test_find_nothing(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop, 1)
        assert Pgrep().find("postgres") == []
        assert popen.call_args == _popen_call(["pgrep", "-f", "postgres"])

    def test_find_failure(self, popen, pipe_processor_loop):
        _mock_pipe(popen, pipe_processor_loop, 2, "", "pgrep: invalid user name")
        with pytest.raises(CommandFailedException):
            Pgrep().find("postgres", user="nobody-here")


def test_shell_quote():
    assert shell_quote("a") == "'a'"
    assert shell_quote("two words") == "'two words'"
    assert shell_quote("it's") == "'it'\\''s'"
    assert shell_quote("$PGDATA") == "'$PGDATA'"


def test_full_command_quote():
    assert full_command_quote("barman") == "barman"
    assert full_command_quote("barman", []) == "barman"
    assert (
        full_command_quote("barman", ["recover", "main", "a b"])
        == "barman 'recover' 'main' 'a b'"
    )


def test_ere_quote():
    assert ere_quote("/var/lib/barman/recovery/20240101T000000") == (
        "/var/lib/barman/recovery/20240101T000000"
    )
    assert ere_quote("/srv/pg.data+(1)") == "/srv/pg\\.data\\+\\(1\\)"
