"""
Multi-atlas label fusion (crlProbabilisticGMMSTAPLE).
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fetalmas.naming import CaseLayout, LabelScheme, is_done
from fetalmas.segmentation.lists import read_manifest
from fetalmas.subjects import Subject
from fetalmas.tools import Toolkit
from fetalmas.utils.commands import CommandRunner, JobResult

logger = logging.getLogger(__name__)

# A single rater cannot be fused
MIN_ATLASES = 2


@dataclass(frozen=True)
class FusionOutcome:
    output_path: Path
    created: bool
    job: Optional[JobResult] = None
    # False when too few atlas/label pairs were available to fuse
    eligible: bool = True


class SegmentationRunner:
    """
    Fuse the warped atlas labels of one subject into a consensus segmentation.

    Parameters
    ----------
    toolkit : Toolkit
        Builds the fusion command line
    runner : CommandRunner
        Executes it
    """

    def __init__(self, toolkit: Toolkit, runner: CommandRunner):
        self.toolkit = toolkit
        self.runner = runner

    def run(self, subject: Subject, layout: CaseLayout, scheme: LabelScheme) -> FusionOutcome:
        """
        Run fusion unless it is impossible or already done.

        Returns
        -------
        FusionOutcome
            ``created`` is True when the fused output exists afterwards
        """
        output = layout.fused(scheme)
        manifest = read_manifest(layout, scheme)

        if len(manifest) < MIN_ATLASES:
            logger.warning(
                f"  Insufficient transformed atlas images and/or {scheme.output_prefix} labels "
                f"for {subject.name} ({len(manifest)} pair(s)), so STAPLE won't segment {scheme.output_prefix}."
            )
            logger.warning("  If this was unexpected, validate that the input GA matches at least one atlas.")
            return FusionOutcome(output_path=output, created=is_done(output), eligible=False)

        if is_done(output):
            logger.info(f"  {output} already exists. Skipping...")
            return FusionOutcome(output_path=output, created=True)

        logger.info(f"  {output} not found. Processing...")
        layout.seg_dir.mkdir(parents=True, exist_ok=True)
        command = self.toolkit.fusion(
            label_manifest=layout.label_manifest(scheme),
            target=subject.image_path,
            atlas_manifest=layout.atlas_manifest(scheme),
            output=output,
        )
        job = self.runner.run(command, f'fusion {scheme.output_prefix}')
        return FusionOutcome(output_path=output, created=is_done(output), job=job)
