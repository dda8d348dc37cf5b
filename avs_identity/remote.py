"""
Remote command execution on the management endpoint.

Commands run through the system ssh client. One multiplexed control
connection is opened on first use and reused for every later command until
close() is called.
"""

import os
import shlex
import logging
import tempfile
import subprocess
from typing import Dict, Any, List, NamedTuple, Optional

from avs_identity.errors import TransportError

logger = logging.getLogger(__name__)

# ssh reserves exit status 255 for its own connection errors
SSH_TRANSPORT_FAILURE = 255


class CommandResult(NamedTuple):
    command: str
    exit_status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def output(self) -> str:
        """stdout and stderr together, the way an operator would see them."""
        return '\n'.join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class RemoteCommandChannel:
    """
    SSH command channel bound to one management endpoint.

    Password authentication goes through sshpass with the password passed in
    the SSHPASS environment variable; key authentication uses key_file.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the channel.

        Args:
            config: management configuration dictionary
        """
        self.host = config['host']
        self.username = config['username']
        self.password = config.get('password')
        self.key_file = config.get('key_file')
        self.port = config.get('port', 22)
        self.command_timeout = config.get('command_timeout', 30)
        self.control_persist = config.get('control_persist', 300)

        self._control_dir = None
        self.control_path = None
        self._opened = False

    @property
    def target(self) -> str:
        return f"{self.username}@{self.host}"

    def open(self) -> None:
        """Establish the control connection by running a no-op command."""
        if self._opened:
            return

        self._control_dir = tempfile.mkdtemp(prefix='avs_identity_ssh_')
        self.control_path = os.path.join(self._control_dir, 'control')
        self._opened = True

        try:
            result = self.run('true')
        except TransportError:
            self.close()
            raise
        if not result.ok:
            self.close()
            raise TransportError(f"Could not open session to {self.target}: {result.output}")
        logger.debug(f"Opened SSH session to {self.target}:{self.port}")

    def _ssh_options(self) -> List[str]:
        options = [
            '-o', 'StrictHostKeyChecking=no',
            '-o', 'UserKnownHostsFile=/dev/null',
            '-o', 'LogLevel=ERROR',
            '-o', 'ControlMaster=auto',
            '-o', f'ControlPath={self.control_path}',
            '-o', f'ControlPersist={self.control_persist}',
            '-p', str(self.port),
        ]
        if self.key_file:
            options += ['-i', self.key_file, '-o', 'BatchMode=yes']
        return options

    def _base_command(self) -> List[str]:
        cmd = ['ssh'] + self._ssh_options()
        if not self.key_file:
            cmd = ['sshpass', '-e'] + cmd
        return cmd

    def _environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        if self.password and not self.key_file:
            env['SSHPASS'] = self.password
        return env

    def run(self, command: str, timeout: Optional[int] = None) -> CommandResult:
        """
        Run a shell command on the management endpoint.

        Args:
            command: Shell command string, executed by the remote login shell
            timeout: Seconds to wait; defaults to command_timeout

        Returns:
            CommandResult with the remote exit status and captured output

        Raises:
            TransportError: If the session cannot be used or the command times out
        """
        if not self._opened:
            self.open()

        timeout = timeout or self.command_timeout
        cmd = self._base_command() + [self.target, command]
        logger.debug(f"Running on {self.host}: {command}")

        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=self._environment()
            )
        except subprocess.TimeoutExpired:
            raise TransportError(f"Command timed out after {timeout}s on {self.host}: {command}")
        except OSError as e:
            raise TransportError(f"Could not run ssh client for {self.host}: {e}")

        if completed.returncode == SSH_TRANSPORT_FAILURE:
            raise TransportError(
                f"SSH transport failure to {self.target}: {completed.stderr.strip() or 'exit status 255'}")

        return CommandResult(command, completed.returncode, completed.stdout, completed.stderr)

    def close(self) -> None:
        """Shut down the control connection."""
        if not self._opened:
            return

        try:
            subprocess.run(
                self._base_command() + ['-O', 'exit', self.target],
                capture_output=True,
                text=True,
                timeout=10,
                env=self._environment()
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"Error closing SSH session to {self.host}: {e}")
        finally:
            self._opened = False
            if self._control_dir:
                try:
                    os.rmdir(self._control_dir)
                except OSError:
                    logger.debug(f"Control directory {self._control_dir} not removed")
                self._control_dir = None
            logger.debug(f"Closed SSH session to {self.host}")

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def quote(value: str) -> str:
    """Quote a value for the remote shell."""
    return shlex.quote(value)
