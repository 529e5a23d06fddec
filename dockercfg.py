import copy
import json
import logging
import os
import tempfile
from pathlib import Path

from readiness import wait_for_docker
from shell import run_command
from testinit_config import TestInitError

logger = logging.getLogger(__name__)


def merge(base, changes):
    """Merge changes into a copy of base; nested dicts are merged key by key"""
    merged = copy.deepcopy(base)
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class DockerCfg:
    """Read-modify-write access to the Docker daemon JSON config"""

    def __init__(self, path='/etc/docker/daemon.json'):
        self.path = Path(path)

    def load(self):
        """Load the config, treating a missing or empty file as {}"""
        try:
            content = self.path.read_text()
        except FileNotFoundError:
            return {}
        if not content.strip():
            return {}
        try:
            cfg = json.loads(content)
        except json.JSONDecodeError as e:
            raise TestInitError(f"{self.path} is not valid JSON: {e}")
        if not isinstance(cfg, dict):
            raise TestInitError(f"{self.path} does not hold a JSON object")
        return cfg

    def save(self, cfg):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix='.daemon.json.')
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(cfg, f, indent=2)
                f.write('\n')
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, self.path)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

    def update(self, changes):
        """Merge changes into the stored config; returns True if it changed"""
        current = self.load()
        updated = merge(current, changes)
        if updated == current:
            logger.debug("%s already up to date", self.path)
            return False
        self.save(updated)
        logger.info("updated %s: %s", self.path, json.dumps(changes, sort_keys=True))
        return True

    def set_mtu(self, mtu):
        return self.update({'mtu': mtu})

    def set_userns_remap(self, name):
        return self.update({'userns-remap': name})

    def add_runtime(self, name, path):
        return self.update({'runtimes': {name: {'path': path}}})


def restart_docker(config):
    """Restart the Docker daemon and wait until it answers again"""
    logger.info("restarting docker")
    run_command(['systemctl', 'restart', 'docker'], check=True)
    wait_for_docker(config)
