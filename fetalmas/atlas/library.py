#!/usr/bin/env python3
"""
Atlas library loading.

The atlas manifest lists one reference template per line as
``<path relative to atlas root> <GA>``. The library is loaded once per run
and shared read-only by every subject and label scheme.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import List

from fetalmas.naming import image_stem
from fetalmas.subjects import ManifestError, read_manifest_lines

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AtlasEntry:
    template_path: Path
    template_age: int
    template_name: str


def parse_atlas_line(line: str, atlas_root: Path) -> AtlasEntry:
    """
    Parse one atlas manifest line.

    Raises
    ------
    ManifestError
        If the line does not hold a path and an integer GA
    """
    fields = line.split()
    if len(fields) < 2:
        raise ManifestError(f"Atlas manifest line has no GA: {line!r}")
    try:
        age = int(fields[1])
    except ValueError:
        raise ManifestError(f"Atlas manifest line has a non-integer GA: {line!r}")

    template_path = Path(atlas_root) / fields[0]
    return AtlasEntry(
        template_path=template_path,
        template_age=age,
        template_name=image_stem(template_path),
    )


def load_atlas_library(manifest_path: Path, atlas_root: Path) -> List[AtlasEntry]:
    """
    Load and check the atlas library.

    Every template listed must exist; all missing templates are logged before
    the run is aborted.

    Parameters
    ----------
    manifest_path : Path
        Atlas manifest text file
    atlas_root : Path
        Directory the manifest paths are relative to

    Returns
    -------
    list of AtlasEntry
        Entries in manifest order

    Raises
    ------
    ManifestError
        If the manifest is malformed or any template is missing
    """
    entries = [parse_atlas_line(line, atlas_root) for line in read_manifest_lines(manifest_path)]
    if not entries:
        raise ManifestError(f"Atlas manifest {manifest_path} lists no templates")

    missing = [entry.template_path for entry in entries if not entry.template_path.is_file()]
    for path in missing:
        logger.error(f"Atlas template doesn't exist: {path}")
    if missing:
        raise ManifestError(
            f"Couldn't find {len(missing)} template(s). Check the paths in {manifest_path}; "
            "symbolic links under the atlas root may help."
        )

    duplicates = [name for name, n in Counter(e.template_name for e in entries).items() if n > 1]
    for name in duplicates:
        logger.warning(
            f"Atlas name '{name}' is listed more than once; its warped outputs will collide"
        )

    logger.info(f"Loaded {len(entries)} atlas templates from {manifest_path}")
    return entries
