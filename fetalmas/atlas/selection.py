"""
Gestational-age matching of atlases to a subject.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from fetalmas.atlas.library import AtlasEntry
from fetalmas.naming import label_path_for
from fetalmas.subjects import Subject

logger = logging.getLogger(__name__)

# Atlases within +/- one week GA of the subject are used
AGE_WINDOW = 1


@dataclass(frozen=True)
class MatchedAtlas:
    atlas: AtlasEntry
    label_path: Path
    label_exists: bool

    @property
    def template_name(self) -> str:
        return self.atlas.template_name


def is_match(atlas: AtlasEntry, subject: Subject) -> bool:
    """Within the age window and not the subject's own image."""
    return (
        abs(atlas.template_age - subject.ga) <= AGE_WINDOW
        and atlas.template_name != subject.name
    )


def select_atlases(atlases: Sequence[AtlasEntry], subject: Subject, suffix: str) -> List[MatchedAtlas]:
    """
    Match the atlas library to a subject for one label scheme.

    Parameters
    ----------
    atlases : sequence of AtlasEntry
        Full atlas library, in manifest order
    subject : Subject
        Subject being labelled
    suffix : str
        Label scheme suffix used to locate each atlas's label file

    Returns
    -------
    list of MatchedAtlas
        Matches in manifest order; empty if no atlas is within the age window
    """
    matched = []
    for atlas in atlases:
        if not is_match(atlas, subject):
            continue
        label_path = label_path_for(atlas.template_path, suffix)
        matched.append(MatchedAtlas(atlas=atlas, label_path=label_path, label_exists=label_path.is_file()))

    logger.info(f"  Atlases for {subject.name} (GA {subject.ga}), labels '{suffix}':")
    for match in matched:
        state = '' if match.label_exists else '  [no label file]'
        logger.info(f"    {match.atlas.template_path} -> {match.label_path}{state}")

    return matched
