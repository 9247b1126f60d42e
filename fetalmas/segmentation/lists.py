"""
Atlas/label list files consumed by label fusion.

For each subject and label scheme two text files are written to ``log/``:
``atlas_for_<prefix>.txt`` with the warped atlas images and
``labels_for_<prefix>.txt`` with the warped labels. Line ``i`` of both files
belongs to the same atlas.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence

from fetalmas.atlas.selection import MatchedAtlas
from fetalmas.naming import CaseLayout, LabelScheme, is_done

logger = logging.getLogger(__name__)


@dataclass
class AtlasLabelManifest:
    atlases: List[Path] = field(default_factory=list)
    labels: List[Path] = field(default_factory=list)

    def __len__(self) -> int:
        return min(len(self.atlases), len(self.labels))


def _read_list(path: Path) -> List[Path]:
    if not path.is_file():
        return []
    return [Path(line.strip()) for line in path.read_text().splitlines() if line.strip()]


def read_manifest(layout: CaseLayout, scheme: LabelScheme) -> AtlasLabelManifest:
    """Load the list files of a subject/scheme; missing files read as empty lists."""
    return AtlasLabelManifest(
        atlases=_read_list(layout.atlas_manifest(scheme)),
        labels=_read_list(layout.label_manifest(scheme)),
    )


def assemble_manifest(layout: CaseLayout, scheme: LabelScheme, matches: Sequence[MatchedAtlas]) -> AtlasLabelManifest:
    """
    Write the atlas/label lists for one subject and scheme.

    Previous list files are removed first so entries from an earlier partial
    run never linger. An atlas is listed only when both its warped grayscale
    and its warped label exist.

    Returns
    -------
    AtlasLabelManifest
        The pairs written, in matched-atlas order
    """
    atlas_file = layout.atlas_manifest(scheme)
    label_file = layout.label_manifest(scheme)
    layout.log_dir.mkdir(parents=True, exist_ok=True)

    for old in (atlas_file, label_file):
        if old.exists():
            logger.debug(f"  Removing {old}")
            old.unlink()

    manifest = AtlasLabelManifest()
    for match in matches:
        warped_atlas = layout.warped_atlas(match.template_name)
        warped_label = layout.warped_label(match.label_path)
        if is_done(warped_atlas) and is_done(warped_label):
            manifest.atlases.append(warped_atlas)
            manifest.labels.append(warped_label)

    logger.info(f"Writing {len(manifest)} atlas/label pairs to {atlas_file}")
    atlas_file.write_text(''.join(f'{p}\n' for p in manifest.atlases))
    label_file.write_text(''.join(f'{p}\n' for p in manifest.labels))
    return manifest
