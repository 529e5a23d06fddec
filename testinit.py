#!/usr/bin/env python3

import json
import logging
import os
import requests
import shlex
import shutil
import subprocess
import sys
import tempfile

from dockercfg import DockerCfg, restart_docker
from mtu import egress_mtu, mtu_differs, resolve_mtu
from readiness import wait_for_docker, wait_for_systemd
from shell import run_bash, run_command
from testinit_config import TestInitConfig, TestInitError, configure_logging

logger = logging.getLogger(__name__)


class TestInit:
    """Initialization steps for a sysbox test container"""
    __test__ = False

    def __init__(self, config=None):
        self.config = config if config is not None else TestInitConfig.from_environment()
        self.docker_cfg = DockerCfg(self.config.docker_cfg_file)

    def _docker_changes(self):
        changes = {}
        resolved = resolve_mtu(self.config.l0_mtu)
        if mtu_differs(resolved):
            changes['mtu'] = resolved
        if self.config.userns_remap:
            changes['userns-remap'] = self.config.userns_remap
        if self.config.install_method == 'build':
            changes['runtimes'] = {self.config.runtime_name: {'path': self.config.runtime_path}}
        return changes

    def configure_docker(self):
        """Apply mtu, userns-remap and runtime settings; restart docker if needed"""
        changes = self._docker_changes()
        if not changes or not self.docker_cfg.update(changes):
            logger.info("docker config unchanged")
            return False
        restart_docker(self.config)
        return True

    def _download_package(self, url, dest_dir):
        """Download the sysbox package to dest_dir and return its path"""
        filename = os.path.basename(url.split('?', 1)[0]) or 'sysbox.deb'
        pkg_path = os.path.join(dest_dir, filename)
        logger.info("downloading %s", url)

        resp = requests.get(url, stream=True, timeout=60)
        resp.raise_for_status()

        total_size = int(resp.headers.get('content-length', 0))
        downloaded = 0
        with open(pkg_path, 'wb') as f:
            for chunk in resp.iter_content(chunk_size=8192):
                if chunk:
                    f.write(chunk)
                    downloaded += len(chunk)
        # content-length counts encoded bytes, iter_content yields decoded ones
        encoded = bool(resp.headers.get('content-encoding'))
        if total_size and not encoded and downloaded != total_size:
            raise TestInitError(f"incomplete download of {url}: {downloaded} of {total_size} bytes")
        logger.info("downloaded %s (%d bytes)", pkg_path, downloaded)
        return pkg_path

    def _install_package(self):
        if self.config.pkg_url:
            temp_dir = tempfile.mkdtemp(prefix='sysbox_pkg_')
            try:
                pkg_path = self._download_package(self.config.pkg_url, temp_dir)
                run_command(['dpkg', '-i', pkg_path], check=True)
            finally:
                shutil.rmtree(temp_dir, ignore_errors=True)
            return

        if not self.config.pkg_file:
            raise TestInitError("package install needs SYSBOX_PKG_FILE or SYSBOX_PKG_URL")
        if not os.path.isfile(self.config.pkg_file):
            raise TestInitError(f"No package file '{self.config.pkg_file}' exists")
        run_command(['dpkg', '-i', self.config.pkg_file], check=True)

    def _install_build(self):
        src_dir = self.config.src_dir
        if not os.path.isdir(src_dir):
            raise TestInitError(f"No sysbox source directory '{src_dir}' exists")
        bash_script = f"""
        set -o errexit -o nounset -o pipefail
        make -C {shlex.quote(src_dir)} sysbox-local
        make -C {shlex.quote(src_dir)} install
        """
        run_bash(bash_script, show_realtime=True)

    def init(self, args):
        """Run every init step: TESTINIT init"""
        if self.config.wait_systemd:
            wait_for_systemd(self.config)
        wait_for_docker(self.config)
        self.configure_docker()
        self.cleanup([])
        self.install([])
        if self.config.install_method == 'build':
            return self.start([])
        return 0

    def mtu(self, args):
        """Print the MTU for the docker bridge: TESTINIT mtu"""
        print(resolve_mtu(self.config.l0_mtu))
        return 0

    def egress_mtu(self, args):
        """Print this host's egress interface MTU: TESTINIT egress-mtu"""
        value = egress_mtu()
        if value is None:
            print("No default route or interface mtu found", file=sys.stderr)
            return 1
        print(value)
        return 0

    def docker_cfg_cmd(self, args):
        """Show or patch the docker daemon config: TESTINIT docker-cfg <action> [args...]"""
        usage = "Usage: testinit docker-cfg show | mtu <n> | userns-remap <name> | runtime <name> <path>"
        if len(args) < 1:
            print(usage, file=sys.stderr)
            return 1

        action = args[0]
        if action == 'show':
            print(json.dumps(self.docker_cfg.load(), indent=2))
            return 0
        if action == 'mtu' and len(args) == 2:
            if not args[1].isdigit() or int(args[1]) < 1:
                print(f"Invalid mtu '{args[1]}'", file=sys.stderr)
                return 1
            changed = self.docker_cfg.set_mtu(int(args[1]))
        elif action == 'userns-remap' and len(args) == 2:
            changed = self.docker_cfg.set_userns_remap(args[1])
        elif action == 'runtime' and len(args) == 3:
            changed = self.docker_cfg.add_runtime(args[1], args[2])
        else:
            print(usage, file=sys.stderr)
            return 1

        if changed:
            restart_docker(self.config)
        return 0

    def wait(self, args):
        """Wait for systemd and docker: TESTINIT wait"""
        if self.config.wait_systemd:
            wait_for_systemd(self.config)
        wait_for_docker(self.config)
        return 0

    def cleanup(self, args):
        """Remove leftover containers: TESTINIT cleanup"""
        result = run_command(['docker', 'ps', '-aq'], check=True)
        container_ids = result.stdout.split()
        if not container_ids:
            logger.info("no leftover containers")
            return 0
        run_command(['docker', 'rm', '-f'] + container_ids, check=True)
        logger.info("removed %d leftover containers", len(container_ids))
        return 0

    def install(self, args):
        """Build or install sysbox: TESTINIT install"""
        method = self.config.install_method
        if method == 'build':
            self._install_build()
        elif method == 'package':
            self._install_package()
        else:
            logger.info("sysbox install skipped")
            return 0
        logger.info("sysbox installed (%s)", method)
        return 0

    def start(self, args):
        """Launch sysbox in test mode: TESTINIT start"""
        cmd = ['sysbox', '-t'] + shlex.split(self.config.start_args)
        logger.info("starting sysbox: %s", ' '.join(cmd))
        run_command(cmd, check=True)
        return 0

    def help(self, args):
        """Display help message"""
        help_text = """TESTINIT - sysbox test container initialization

Usage: testinit [args...]

Commands:
  init         Wait for readiness, configure docker, clean up, install and start sysbox
  mtu          Print the MTU to use for the container's docker bridge
  egress-mtu   Print this host's egress interface MTU (for PHY_EGRESS_IFACE_MTU)
  docker-cfg   Show or patch the docker daemon config
  wait         Wait for systemd and docker to be ready
  cleanup      Remove leftover containers
  install      Build or install sysbox
  start        Launch sysbox in test mode
  help         Display this message"""
        print(help_text)
        return 0

    def command_map(self):
        return {
            'init': self.init,
            'mtu': self.mtu,
            'egress-mtu': self.egress_mtu,
            'docker-cfg': self.docker_cfg_cmd,
            'wait': self.wait,
            'cleanup': self.cleanup,
            'install': self.install,
            'start': self.start,
            'help': self.help
        }


def main(argv=None):
    """Main entry point"""
    argv = sys.argv[1:] if argv is None else argv
    command = argv[0] if argv else 'help'
    args = argv[1:]

    try:
        testinit = TestInit()
        configure_logging(testinit.config.log_level)
        command_map = testinit.command_map()
        if command not in command_map:
            print(f"Unknown command: {command}", file=sys.stderr)
            testinit.help([])
            return 1
        return command_map[command](args)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        return 130
    except subprocess.CalledProcessError as e:
        cmd = e.cmd if isinstance(e.cmd, str) else ' '.join(e.cmd)
        print(f"Error: '{cmd.strip()}' exited with {e.returncode}", file=sys.stderr)
        if e.stderr:
            print(e.stderr.rstrip(), file=sys.stderr)
        return 1
    except (TestInitError, requests.RequestException, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
