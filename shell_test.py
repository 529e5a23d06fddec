import subprocess
from unittest.mock import MagicMock, patch

import pytest

import shell


def test_run_command_missing_executable_exits_127():
    missing = FileNotFoundError(2, "No such file or directory: 'ip'")
    with patch('shell.subprocess.run', side_effect=missing):
        result = shell.run_command(['ip', 'route'])
    assert result.returncode == 127
    assert result.stdout == ''
    assert 'ip' in result.stderr


def test_run_command_missing_executable_with_check_raises():
    with patch('shell.subprocess.run', side_effect=FileNotFoundError(2, 'No such file')):
        with pytest.raises(subprocess.CalledProcessError) as excinfo:
            shell.run_command(['docker', 'ps'], check=True)
    assert excinfo.value.returncode == 127
    assert excinfo.value.cmd == ['docker', 'ps']


def _fake_popen(process):
    popen = MagicMock()
    popen.return_value.__enter__.return_value = process
    popen.return_value.__exit__.return_value = False
    return popen


def test_run_bash_realtime_streams_and_checks_status():
    process = MagicMock()
    process.stdout.readline.side_effect = ['building\n', '']
    process.poll.return_value = 2
    process.wait.return_value = 2
    popen = _fake_popen(process)

    with patch('shell.subprocess.Popen', popen):
        with pytest.raises(subprocess.CalledProcessError):
            shell.run_bash('make', show_realtime=True)
    process.kill.assert_not_called()
    popen.return_value.__exit__.assert_called_once()


def test_run_bash_realtime_kills_child_on_interrupt():
    process = MagicMock()
    process.stdout.readline.side_effect = KeyboardInterrupt
    popen = _fake_popen(process)

    with patch('shell.subprocess.Popen', popen):
        with pytest.raises(KeyboardInterrupt):
            shell.run_bash('make sysbox-local', show_realtime=True)
    process.kill.assert_called_once()
    popen.return_value.__exit__.assert_called_once()
