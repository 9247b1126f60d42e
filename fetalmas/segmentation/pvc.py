#!/usr/bin/env python3
"""
Partial volume correction (PVC) of fused tissue segmentations.

Correction is run with crlCorrectFetalPartialVoluming and then checked: it is
expected to shrink the cortical plate. The monitored label's volume is
measured before and after correction and the run is flagged when the
reduction is not larger than ``min_reduction`` percent.

Volumes are measured either with crlComputeVolume or in-process with nibabel.
"""

import logging
import zlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import nibabel as nib
import numpy as np
from nibabel.filebasedimages import ImageFileError

from fetalmas.config import PipelineConfig
from fetalmas.naming import CaseLayout, LabelScheme, is_done
from fetalmas.subjects import Subject
from fetalmas.tools import Toolkit
from fetalmas.utils.commands import CommandRunner

logger = logging.getLogger(__name__)


class Verdict(Enum):
    SUCCESS = 'Success'
    FAILURE = 'Failure'


@dataclass(frozen=True)
class PVCOutcome:
    output_path: Path
    before_volume: Optional[float]
    after_volume: Optional[float]
    reduction_percent: Optional[float]
    verdict: Verdict

    @property
    def failed(self) -> bool:
        return self.verdict is Verdict.FAILURE


class CrkitVolumeMeasurer:
    """Label volume from ``crlComputeVolume <segmentation> <label>``."""

    def __init__(self, toolkit: Toolkit, runner: CommandRunner):
        self.toolkit = toolkit
        self.runner = runner

    def measure(self, segmentation: Path, label: int) -> Optional[float]:
        if not Path(segmentation).exists():
            return None
        result = self.runner.run(self.toolkit.volume(segmentation, label), 'volume')
        tokens = result.stdout.split()
        if not result.ok or not tokens:
            return None
        try:
            return float(tokens[-1])
        except ValueError:
            logger.warning(f"  Unexpected volume output for {segmentation}: {result.stdout.strip()!r}")
            return None


class NiftiVolumeMeasurer:
    """Label volume in mm^3: voxel count of the label times the voxel volume."""

    def measure(self, segmentation: Path, label: int) -> Optional[float]:
        if not Path(segmentation).exists():
            return None
        try:
            img = nib.load(str(segmentation))
            data = np.asanyarray(img.dataobj)
        except (ImageFileError, OSError, EOFError, ValueError, zlib.error) as e:
            logger.warning(f"  Could not read {segmentation}: {e}")
            return None
        n_voxels = int(np.count_nonzero(np.rint(data) == label))
        voxel_volume = float(np.prod(img.header.get_zooms()[:3]))
        return n_voxels * voxel_volume


def make_volume_measurer(config: PipelineConfig, toolkit: Toolkit, runner: CommandRunner):
    if config.volume_backend == 'nibabel':
        return NiftiVolumeMeasurer()
    return CrkitVolumeMeasurer(toolkit, runner)


def reduction_percent(before: Optional[float], after: Optional[float]) -> Optional[float]:
    """``100 * (1 - after / before)``; undefined when a volume is missing or before is zero."""
    if before is None or after is None or before == 0:
        return None
    return 100.0 * (1.0 - after / before)


def judge(reduction: Optional[float], min_reduction: float) -> Verdict:
    if reduction is not None and reduction > min_reduction:
        return Verdict.SUCCESS
    return Verdict.FAILURE


class PVCValidator:
    """
    Correct a fused tissue segmentation and check the correction's effect.

    Correction is skipped when its output already exists; the check is
    always repeated against whatever output is on disk.
    """

    def __init__(self, config: PipelineConfig, toolkit: Toolkit, runner: CommandRunner, measurer=None):
        self.config = config
        self.toolkit = toolkit
        self.runner = runner
        self.measurer = measurer or make_volume_measurer(config, toolkit, runner)

    def applies_to(self, scheme: LabelScheme) -> bool:
        return self.config.is_tissue_scheme(scheme)

    def run(self, subject: Subject, layout: CaseLayout, scheme: LabelScheme) -> Optional[PVCOutcome]:
        """
        Returns
        -------
        PVCOutcome or None
            None when the scheme is not a tissue scheme or there is nothing to correct
        """
        if not self.applies_to(scheme):
            logger.info("  Not a WM/GM tissue segmentation. Skipping PVC")
            return None

        segmentation = layout.fused(scheme)
        if not is_done(segmentation):
            logger.error(
                f"  {segmentation} was not created for some reason, "
                "so there's nothing to correct (partial volume correction)."
            )
            return None

        corrected = layout.corrected(scheme)
        if not is_done(corrected):
            logger.info("  Partial volume correction not found. Running...")
            layout.pvc_dir.mkdir(parents=True, exist_ok=True)
            self.runner.run(
                self.toolkit.correction(subject.image_path, segmentation, corrected),
                f'pvc {scheme.output_prefix}',
            )
        else:
            logger.info(f"  Partial volume correction {corrected} already complete. Skipping...")

        return self.validate(segmentation, corrected)

    def validate(self, segmentation: Path, corrected: Path) -> PVCOutcome:
        logger.info("  Checking PVC output...")
        label = self.config.monitored_label
        before = self.measurer.measure(segmentation, label)
        after = self.measurer.measure(corrected, label)
        reduction = reduction_percent(before, after)
        verdict = judge(reduction, self.config.min_reduction)

        if verdict is Verdict.SUCCESS:
            logger.info(
                f"  SUCCESS: PVC appears to have had the desired effect "
                f"(CP change was {reduction:.2f}% > {self.config.min_reduction}%)"
            )
        else:
            shown = 'undefined' if reduction is None else f'{reduction:.2f}%'
            logger.warning(
                f"  FAILURE: Problem detected. Change from SEG to PVC was {shown}, "
                f"not more than {self.config.min_reduction}%"
            )
            logger.warning("  PVC didn't have the desired effect of decreasing the CP label.")
            logger.warning(f"  Do the CP, SP, and WM labels match what {self.toolkit.tools.pvc} is expecting?")

        return PVCOutcome(
            output_path=corrected,
            before_volume=before,
            after_volume=after,
            reduction_percent=reduction,
            verdict=verdict,
        )
