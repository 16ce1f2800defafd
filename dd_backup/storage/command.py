"""External command execution with optional privilege escalation.

Every external primitive the backup run needs (lsblk, mount, umount, sync,
mkdir, dd, chown) goes through a CommandRunner. Commands that need root are
run with ``privileged=True``; the runner prefixes them with ``sudo`` when
the process is not already root and sudo can be launched.
"""

from __future__ import annotations

import os
import subprocess
from collections import deque
from typing import Callable, Optional, Sequence

from dd_backup.logging import LoggerFactory

from .exceptions import CommandExecutionError


STDERR_TAIL_LINES = 50

log = LoggerFactory.for_command()


class CommandRunner:
    def __init__(self, use_sudo: Optional[bool] = None):
        self._sudo_available = use_sudo

    @property
    def sudo_available(self) -> bool:
        if self._sudo_available is None:
            self._sudo_available = self._probe_sudo()
        return self._sudo_available

    @staticmethod
    def _probe_sudo() -> bool:
        if os.geteuid() == 0:
            return False
        try:
            subprocess.run(
                ["sudo", "--version"], check=False, capture_output=True, text=True
            )
        except OSError:
            return False
        return True

    def build_command(
        self, command: Sequence[str], description: str, privileged: bool = False
    ) -> list[str]:
        parts = list(command)
        if privileged and self.sudo_available:
            log.info(f"Sudo is needed to {description}")
            parts = ["sudo", *parts]
        return parts

    def run(
        self,
        command: Sequence[str],
        description: str,
        privileged: bool = False,
    ) -> subprocess.CompletedProcess:
        """Run a command and capture its output.

        A nonzero exit status is returned to the caller, not raised.

        Raises:
            CommandExecutionError: If the program could not be launched
        """
        parts = self.build_command(command, description, privileged)
        log.debug(f"Running command: {' '.join(parts)}")
        try:
            result = subprocess.run(parts, check=False, capture_output=True, text=True)
        except OSError as error:
            raise CommandExecutionError(description, str(error)) from error
        if result.stdout:
            log.trace(f"stdout: {result.stdout.strip()}")
        if result.stderr:
            log.trace(f"stderr: {result.stderr.strip()}")
        log.debug(f"Command completed with return code {result.returncode}")
        return result

    def check(
        self,
        command: Sequence[str],
        description: str,
        privileged: bool = False,
    ) -> str:
        """Run a command and raise CommandExecutionError if it fails."""
        result = self.run(command, description, privileged=privileged)
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            stdout = (result.stdout or "").strip()
            raise CommandExecutionError(
                description, stderr or stdout, returncode=result.returncode
            )
        return result.stdout

    def stream(
        self,
        command: Sequence[str],
        description: str,
        privileged: bool = False,
        on_line: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Run a long command, forwarding each stderr line as it arrives.

        dd reports progress with carriage returns; text mode translates them
        to line breaks so every update reaches ``on_line``.

        Returns:
            The last STDERR_TAIL_LINES lines of stderr

        Raises:
            CommandExecutionError: If the program could not be launched or
                exited with a nonzero status
        """
        parts = self.build_command(command, description, privileged)
        log.debug(f"Running command: {' '.join(parts)}")
        try:
            process = subprocess.Popen(
                parts,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as error:
            raise CommandExecutionError(description, str(error)) from error

        stderr_lines = deque(maxlen=STDERR_TAIL_LINES)
        for line in process.stderr:
            stderr_lines.append(line)
            if on_line and line.strip():
                on_line(line.strip())
        process.wait()

        stderr_output = "".join(stderr_lines)
        if process.returncode != 0:
            raise CommandExecutionError(
                description, stderr_output.strip(), returncode=process.returncode
            )
        log.debug("Command completed successfully")
        return stderr_output
