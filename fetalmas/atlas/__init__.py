"""
Atlas library management.

Handles:
- Loading the atlas manifest (templates and gestational ages)
- Matching atlases to a subject within the GA window
- Locating each atlas's label file for a label scheme
"""

from fetalmas.atlas.library import AtlasEntry, load_atlas_library
from fetalmas.atlas.selection import AGE_WINDOW, MatchedAtlas, select_atlases

__all__ = [
    'AGE_WINDOW',
    'AtlasEntry',
    'MatchedAtlas',
    'load_atlas_library',
    'select_atlases',
]
