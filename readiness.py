import logging
import time

from shell import run_command
from testinit_config import TestInitError

logger = logging.getLogger(__name__)

SYSTEMD_READY_STATES = ('running', 'degraded')


def wait_for(probe, what, retries, delay):
    """Poll probe() up to retries times, sleeping delay seconds between tries"""
    for attempt in range(1, retries + 1):
        if probe():
            logger.info("%s is ready", what)
            return
        if attempt < retries:
            logger.debug("%s not ready (attempt %d/%d)", what, attempt, retries)
            time.sleep(delay)
    raise TestInitError(f"{what} not ready after {retries} attempts")


def systemd_ready():
    result = run_command(['systemctl', 'is-system-running'])
    return result.stdout.strip() in SYSTEMD_READY_STATES


def docker_ready():
    return run_command(['docker', 'ps']).returncode == 0


def wait_for_systemd(config):
    wait_for(systemd_ready, 'systemd', config.retries, config.retry_delay)


def wait_for_docker(config):
    wait_for(docker_ready, 'docker', config.retries, config.retry_delay)
