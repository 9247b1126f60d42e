#!/usr/bin/env python3
"""
Execution of external collaborator binaries.

Every invocation produces a JobResult carrying its exit status. The pipeline
stages decide what to do next from output files alone; the exit status is
kept so failures can be reported.
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence

from fetalmas.config import PipelineError

logger = logging.getLogger(__name__)


class DependencyError(PipelineError):
    """Raised when a required external binary cannot be found."""
    pass


@dataclass(frozen=True)
class JobResult:
    name: str
    command: List[str]
    returncode: int
    stdout: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """
    Runs one external process to completion and captures its output.

    Stages receive a runner instead of calling subprocess directly, so tests
    can substitute a runner that records commands and fakes their outputs.
    """

    def run(self, command: Sequence[str], name: str = '') -> JobResult:
        command = [str(part) for part in command]
        name = name or Path(command[0]).name
        logger.debug(f"  Command: {' '.join(command)}")

        try:
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True
            )
        except OSError as e:
            logger.error(f"  {name}: could not start {command[0]}: {e}")
            return JobResult(name=name, command=command, returncode=127, stdout=str(e))

        if result.stdout:
            logger.debug(result.stdout.rstrip())
        if result.returncode != 0:
            logger.warning(f"  {name} exited with status {result.returncode}")
        return JobResult(name=name, command=command, returncode=result.returncode, stdout=result.stdout or '')


def find_binary(binary: str) -> str:
    """Resolve a binary name or path, or return '' when it is not executable."""
    return shutil.which(binary) or ''


def check_dependencies(binaries: Dict[str, str]) -> Dict[str, str]:
    """
    Check that every required binary is available.

    Parameters
    ----------
    binaries : dict
        Role (e.g. 'fusion') -> executable name or path

    Returns
    -------
    dict
        Role -> resolved path

    Raises
    ------
    DependencyError
        If any binary is missing; all missing binaries are listed
    """
    resolved = {}
    missing = []
    for role, binary in binaries.items():
        path = find_binary(binary)
        if path:
            logger.info(f"{binary} found")
            resolved[role] = path
        else:
            logger.error(f"{binary} not found")
            missing.append(binary)

    if missing:
        raise DependencyError(f"Required program(s) not found: {', '.join(missing)}")
    return resolved
