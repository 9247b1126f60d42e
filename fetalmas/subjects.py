"""
Subject manifest parsing.

The subject manifest is a text file with one ``<image path> <GA>`` pair per
line. Problems with the file itself are fatal; problems with a single line
only skip that subject.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import List

from fetalmas.config import PipelineError
from fetalmas.naming import image_stem

logger = logging.getLogger(__name__)


class ManifestError(PipelineError):
    """Raised when a manifest file is missing or is not a text list."""
    pass


class SubjectError(Exception):
    """Raised for a single unusable manifest line; the subject is skipped."""
    pass


@dataclass(frozen=True)
class Subject:
    image_path: Path
    name: str
    ga: int
    line: str


def read_manifest_lines(path: Path) -> List[str]:
    """
    Return the non-blank lines of a whitespace-separated text manifest.

    Raises
    ------
    ManifestError
        If the file does not exist or is not text
    """
    path = Path(path)
    if not path.is_file():
        raise ManifestError(f"Manifest not found: {path}")

    raw = path.read_bytes()
    if b'\x00' in raw:
        raise ManifestError(f"{path} is not a text file")
    try:
        text = raw.decode('utf-8')
    except UnicodeDecodeError:
        raise ManifestError(f"{path} is not a text file")

    return [line.strip() for line in text.splitlines() if line.strip()]


def parse_subject_line(line: str) -> Subject:
    """
    Build a Subject from one manifest line.

    The image path is resolved to an absolute path; the subject name is the
    file name up to its first dot.

    Raises
    ------
    SubjectError
        If the image does not exist or the GA column is missing or not an integer
    """
    fields = line.split()
    if not fields:
        raise SubjectError("Empty manifest line")

    image_path = Path(fields[0]).expanduser().resolve()
    if not image_path.is_file():
        raise SubjectError(f"{image_path} not found! Check path")

    if len(fields) < 2:
        raise SubjectError(
            f"Input {image_path} had no GA specified. "
            "Please add GA as second column of input list and try again."
        )
    try:
        ga = int(fields[1])
    except ValueError:
        raise SubjectError(f"Input {image_path} has a non-integer GA: {fields[1]!r}")

    return Subject(image_path=image_path, name=image_stem(image_path), ga=ga, line=line)


def find_name_collisions(lines: List[str]) -> List[str]:
    """
    Subject names that more than one manifest line resolves to.

    Colliding subjects share a working directory; this is reported, not fixed.
    """
    names = [image_stem(line.split()[0]) for line in lines if line.split()]
    return sorted(name for name, count in Counter(names).items() if count > 1)


def load_subject_lines(path: Path) -> List[str]:
    """Read the subject manifest and warn about colliding subject names."""
    lines = read_manifest_lines(path)
    if not lines:
        raise ManifestError(f"Subject manifest {path} lists no images")

    for name in find_name_collisions(lines):
        logger.warning(
            f"Subject name '{name}' appears more than once in {path}; "
            "these inputs will share (and overwrite) one working directory"
        )
    return lines
