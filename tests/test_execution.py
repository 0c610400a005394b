import subprocess
import sys
from datetime import timedelta

import pytest

from lbproxy.execution import exec_timeout


def test_returns_stdout():
    out = exec_timeout(timedelta(seconds=10), sys.executable, "-c", "print('hello')")
    assert out.strip() == "hello"


def test_accepts_number_of_seconds():
    out = exec_timeout(10, sys.executable, "-c", "import sys; sys.stdout.write('ok')")
    assert out == "ok"


def test_nonzero_exit_raises():
    with pytest.raises(subprocess.CalledProcessError):
        exec_timeout(10, sys.executable, "-c", "import sys; sys.exit(3)")


def test_timeout_kills_process():
    with pytest.raises(subprocess.TimeoutExpired):
        exec_timeout(timedelta(milliseconds=200), sys.executable, "-c", "import time; time.sleep(5)")


def test_missing_command_raises():
    with pytest.raises(ValueError):
        exec_timeout(1)