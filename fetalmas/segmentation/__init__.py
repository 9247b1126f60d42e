"""
Label fusion and post-fusion processing.

This module provides:
1. Atlas/label list assembly for fusion
2. Multi-atlas label fusion
3. Partial volume correction and its validation
4. Cortical plate parcellation
"""

from fetalmas.segmentation.fusion import FusionOutcome, SegmentationRunner
from fetalmas.segmentation.lists import AtlasLabelManifest, assemble_manifest, read_manifest
from fetalmas.segmentation.parcellation import ParcellationOutcome, Parcellator
from fetalmas.segmentation.pvc import PVCOutcome, PVCValidator, Verdict

__all__ = [
    'AtlasLabelManifest',
    'FusionOutcome',
    'PVCOutcome',
    'PVCValidator',
    'ParcellationOutcome',
    'Parcellator',
    'SegmentationRunner',
    'Verdict',
    'assemble_manifest',
    'read_manifest',
]
