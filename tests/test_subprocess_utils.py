import io
import sys

import pytest

from lambda_kit.exceptions import LocalIOError
from lambda_kit.subprocess_utils import run_command, spinner


def test_run_command_captures_output() -> None:
    result = run_command([sys.executable, "-c", "print('hello')"])

    assert result.returncode == 0
    assert result.stdout.strip() == "hello"


def test_run_command_failure_includes_stderr() -> None:
    with pytest.raises(LocalIOError) as exc_info:
        run_command([sys.executable, "-c", "import sys; sys.stderr.write('bad thing'); sys.exit(3)"])

    assert "exit=3" in str(exc_info.value)
    assert "bad thing" in str(exc_info.value)


def test_run_command_missing_binary() -> None:
    with pytest.raises(LocalIOError):
        run_command(["lambda-kit-definitely-not-a-command"])


def test_run_command_timeout() -> None:
    with pytest.raises(LocalIOError):
        run_command([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)


def test_spinner_is_silent_without_tty() -> None:
    stream = io.StringIO()

    with spinner("작업 중", stream=stream, interval=0.01):
        pass

    assert stream.getvalue() == ""
