import logging
import os
import sys
from dataclasses import dataclass
from dotenv import load_dotenv
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(filename)s:%(lineno)d %(message)s"
LOG_DATEFMT = "%H:%M:%S"

INSTALL_METHODS = ('build', 'package', 'none')

_TRUE_VALUES = ('1', 'true', 'yes', 'on')
_FALSE_VALUES = ('0', 'false', 'no', 'off')


class TestInitError(Exception):
    """Custom exception for test container init operations"""
    # Keep pytest from collecting this as a test class.
    __test__ = False


def _env_int(name, default=None):
    value = os.environ.get(name, '').strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise TestInitError(f"{name} must be an integer, got '{value}'")


def _env_positive_int(name, default=None):
    value = _env_int(name, default)
    if value is not None and value < 1:
        raise TestInitError(f"{name} must be at least 1, got {value}")
    return value


def _env_float(name, default):
    value = os.environ.get(name, '').strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise TestInitError(f"{name} must be a number, got '{value}'")


def _env_bool(name, default):
    value = os.environ.get(name, '').strip().lower()
    if not value:
        return default
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise TestInitError(f"{name} must be a boolean, got '{value}'")


@dataclass
class TestInitConfig:
    """Configuration class for test container init settings"""
    __test__ = False

    l0_mtu: Optional[int] = None
    docker_cfg_file: str = '/etc/docker/daemon.json'
    userns_remap: str = ''
    runtime_name: str = 'sysbox-runc'
    runtime_path: str = '/usr/bin/sysbox-runc'
    install_method: str = 'build'
    src_dir: str = '/root/nestybox/sysbox'
    pkg_file: str = ''
    pkg_url: str = ''
    start_args: str = ''
    wait_systemd: bool = True
    retries: int = 10
    retry_delay: float = 2.0
    log_level: str = 'INFO'

    @classmethod
    def from_environment(cls):
        """Create configuration from environment variables (and a .env file)"""
        load_dotenv()
        install_method = os.environ.get('SYSBOX_INSTALL_METHOD', 'build').strip() or 'build'
        if install_method not in INSTALL_METHODS:
            raise TestInitError(
                f"SYSBOX_INSTALL_METHOD must be one of {', '.join(INSTALL_METHODS)}, got '{install_method}'"
            )
        retries = _env_positive_int('TESTINIT_RETRIES', 10)

        return cls(
            l0_mtu=_env_positive_int('PHY_EGRESS_IFACE_MTU'),
            docker_cfg_file=os.environ.get('DOCKER_CFG_FILE', '/etc/docker/daemon.json'),
            userns_remap=os.environ.get('DOCKER_USERNS_REMAP', '').strip(),
            runtime_name=os.environ.get('SYSBOX_RUNTIME_NAME', 'sysbox-runc'),
            runtime_path=os.environ.get('SYSBOX_RUNTIME_PATH', '/usr/bin/sysbox-runc'),
            install_method=install_method,
            src_dir=os.environ.get('SYSBOX_SRC_DIR', '/root/nestybox/sysbox'),
            pkg_file=os.environ.get('SYSBOX_PKG_FILE', ''),
            pkg_url=os.environ.get('SYSBOX_PKG_URL', ''),
            start_args=os.environ.get('SYSBOX_START_ARGS', ''),
            wait_systemd=_env_bool('TESTINIT_WAIT_SYSTEMD', True),
            retries=retries,
            retry_delay=_env_float('TESTINIT_RETRY_DELAY', 2.0),
            log_level=os.environ.get('TESTINIT_LOG_LEVEL', 'INFO').upper()
        )


def configure_logging(level='INFO'):
    """Configure the root logger to write to stdout.

    Accepts a level name or number. Unknown names fall back to INFO.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT, stream=sys.stdout)
