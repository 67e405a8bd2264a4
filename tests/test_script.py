import io
import subprocess
import shutil

import pytest

from droprunner.errors import ConfigError
from droprunner.script import (
    build_script,
    remove_command,
    write_environ,
    write_secrets,
    write_workdir,
)
from droprunner.types import OSFamily, Secret, Step

pytestmark = [pytest.mark.unit]

POSIX = OSFamily.POSIX
WINDOWS = OSFamily.WINDOWS


class TestWriteWorkdir:
    def test_plain_path(self):
        buf = io.BytesIO()
        write_workdir(buf, POSIX, "/tmp/drone-temp")
        assert buf.getvalue() == b"cd /tmp/drone-temp\n"

    def test_path_with_spaces_is_quoted(self):
        buf = io.BytesIO()
        write_workdir(buf, POSIX, "/tmp/my dir")
        assert buf.getvalue() == b"cd '/tmp/my dir'\n"

    def test_windows_path(self):
        buf = io.BytesIO()
        write_workdir(buf, WINDOWS, "C:\\Windows\\Temp\\x")
        assert buf.getvalue() == b"cd C:\\Windows\\Temp\\x\n"

    def test_windows_path_with_spaces(self):
        buf = io.BytesIO()
        write_workdir(buf, WINDOWS, "C:\\Program Files\\it's")
        assert buf.getvalue() == b"cd 'C:\\Program Files\\it''s'\n"


class TestWriteSecrets:
    def test_posix(self):
        buf = io.BytesIO()
        write_secrets(buf, POSIX, [Secret(env="a", data=b"b")])
        assert buf.getvalue() == b'export a="b"\n'

    def test_windows(self):
        buf = io.BytesIO()
        write_secrets(buf, WINDOWS, [Secret(env="a", data=b"b")])
        assert buf.getvalue() == b'$Env:a = "b"\n'

    def test_keeps_list_order(self):
        buf = io.BytesIO()
        write_secrets(buf, POSIX, [Secret(env="z", data=b"1"), Secret(env="a", data=b"2")])
        assert buf.getvalue() == b'export z="1"\nexport a="2"\n'

    def test_quote_in_secret_cannot_end_statement(self):
        buf = io.BytesIO()
        write_secrets(buf, POSIX, [Secret(env="a", data=b'x"; rm -rf / #')])
        assert buf.getvalue() == b'export a="x\\"; rm -rf / #"\n'

    def test_windows_escapes_with_backtick(self):
        buf = io.BytesIO()
        write_secrets(buf, WINDOWS, [Secret(env="a", data=b'$x"`')])
        assert buf.getvalue() == b'$Env:a = "`$x`"``"\n'

    def test_binary_secret_written_verbatim(self):
        buf = io.BytesIO()
        write_secrets(buf, POSIX, [Secret(env="KEY", data=b"\xff\xfe\x00a")])
        assert buf.getvalue() == b'export KEY="\xff\xfe\x00a"\n'

    def test_secret_repr_hides_value(self):
        assert "hunter2" not in repr(Secret(env="a", data=b"hunter2"))


class TestWriteEnviron:
    def test_posix_sorted(self):
        buf = io.BytesIO()
        write_environ(buf, POSIX, {"c": "d", "a": "b"})
        assert buf.getvalue() == b'export a="b"\nexport c="d"\n'

    def test_windows(self):
        buf = io.BytesIO()
        write_environ(buf, WINDOWS, {"a": "b", "c": "d"})
        assert buf.getvalue() == b'$Env:a = "b"\n$Env:c = "d"\n'

    def test_escapes_shell_metacharacters(self):
        buf = io.BytesIO()
        write_environ(buf, POSIX, {"a": 'say "$HOME" `id` \\n'})
        assert buf.getvalue() == b'export a="say \\"\\$HOME\\" \\`id\\` \\\\n"\n'

    @pytest.mark.skipif(shutil.which("sh") is None, reason="requires a POSIX shell")
    @pytest.mark.parametrize("value", ['a"b', "$HOME", "`id`", "back\\slash", "it's", "x\"; echo pwned"])
    def test_exported_value_round_trips(self, value):
        buf = io.BytesIO()
        write_environ(buf, POSIX, {"V": value})
        buf.write(b'printf %s "$V"\n')
        out = subprocess.run(["sh", "-c", buf.getvalue().decode()], capture_output=True, check=True)
        assert out.stdout.decode() == value

    @pytest.mark.parametrize("name", ["1A", "A B", "A=B", "a;b", ""])
    def test_invalid_name_rejected(self, name):
        with pytest.raises(ConfigError):
            write_environ(io.BytesIO(), POSIX, {name: "x"})


class TestRemoveCommand:
    def test_posix(self):
        assert remove_command(POSIX, "/tmp/drone-temp") == "rm -rf /tmp/drone-temp"

    def test_windows(self):
        assert remove_command(WINDOWS, "C:\\Windows\\Temp\\Drone-temp") == (
            'powershell -noprofile -noninteractive -command '
            '"Remove-Item C:\\Windows\\Temp\\Drone-temp -Recurse -Force"'
        )

    def test_posix_path_with_spaces(self):
        assert remove_command(POSIX, "/tmp/a b") == "rm -rf '/tmp/a b'"


class TestBuildScript:
    def test_preamble_order(self):
        step = Step(
            command="sh",
            working_dir="/work",
            envs={"CI": "true"},
            secrets=(Secret(env="TOKEN", data=b"s3cr3t"),),
        )
        buf = io.BytesIO()
        build_script(buf, POSIX, step, b"make test\n")
        assert buf.getvalue() == (
            b"cd /work\n"
            b'export TOKEN="s3cr3t"\n'
            b'export CI="true"\n'
            b"make test\n"
        )

    def test_without_working_dir(self):
        buf = io.BytesIO()
        build_script(buf, POSIX, Step(command="sh"), b"echo hi\n")
        assert buf.getvalue() == b"echo hi\n"


class TestOSFamily:
    @pytest.mark.parametrize("name", ["linux", "darwin", "freebsd", "Linux", ""])
    def test_posix_names(self, name):
        assert OSFamily.from_os(name) is POSIX

    def test_windows(self):
        assert OSFamily.from_os("windows") is WINDOWS

    def test_unknown(self):
        with pytest.raises(ConfigError):
            OSFamily.from_os("plan9")
