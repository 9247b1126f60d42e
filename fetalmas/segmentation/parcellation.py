"""
Cortical plate parcellation.

Combines a corrected tissue segmentation with the fused regional
segmentation: cortical plate voxels take the regional label, every other
voxel keeps its tissue label. Steps, for each corrected tissue file:

1. CPmask  = tissue relabelled so CP labels -> 1, everything else -> 0
2. CPnone  = tissue with CP labels -> 0, everything else unchanged
3. CPparc  = CPmask * regional
4. output  = CPnone + CPparc

The three intermediates are deleted afterwards.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from fetalmas.config import PipelineConfig
from fetalmas.naming import CaseLayout, is_done
from fetalmas.tools import Toolkit
from fetalmas.utils.commands import CommandRunner

logger = logging.getLogger(__name__)


@dataclass
class ParcellationOutcome:
    subject: str
    outputs: List[Path] = field(default_factory=list)


class Parcellator:

    def __init__(self, config: PipelineConfig, toolkit: Toolkit, runner: CommandRunner):
        self.config = config
        self.toolkit = toolkit
        self.runner = runner
        self.tissue = config.scheme(config.primary_tissue)
        self.regional = config.scheme(config.regional)

    def corrected_inputs(self, layout: CaseLayout) -> List[Path]:
        """Corrected segmentations of the primary tissue scheme and schemes derived from it."""
        if not layout.pvc_dir.is_dir():
            return []
        return sorted(layout.pvc_dir.glob(layout.corrected_glob(self.tissue)))

    def run(self, layout: CaseLayout) -> ParcellationOutcome:
        outcome = ParcellationOutcome(subject=layout.name)
        layout.calc_dir.mkdir(parents=True, exist_ok=True)

        tissue = layout.corrected(self.tissue)
        regional = layout.fused(self.regional)
        if not (is_done(tissue) and is_done(regional)):
            logger.warning(
                f"  {self.tissue.output_prefix} PVC or {self.regional.output_prefix} segs "
                f"were not found for {layout.name}. Skipping."
            )
            return outcome

        inputs = self.corrected_inputs(layout)
        logger.info(f"  These CP's will be parcellated: {', '.join(p.name for p in inputs)}")
        for corrected in inputs:
            output = self.parcellate(layout, corrected, regional)
            if is_done(output):
                outcome.outputs.append(output)
        return outcome

    def parcellate(self, layout: CaseLayout, corrected: Path, regional: Path) -> Path:
        """Produce the combined segmentation for one corrected tissue file."""
        output = layout.parcellated(corrected)
        if is_done(output):
            logger.info(f"  {output} already exists. Skipping...")
            return output

        logger.info(f"  Parcellate {corrected.name} using {regional.name}")
        cp_labels = list(self.config.cortical_plate_labels)
        cp_mask = layout.calc_dir / 'CPmask.nii.gz'
        cp_none = layout.calc_dir / 'CPnone.nii.gz'
        cp_parc = layout.calc_dir / 'CPparc.nii.gz'

        steps = [
            ('CP mask', self.toolkit.relabel(corrected, corrected, cp_labels, [1] * len(cp_labels), cp_mask, default=0)),
            ('CP removed', self.toolkit.relabel(corrected, corrected, cp_labels, [0] * len(cp_labels), cp_none)),
            ('CP parcellation', self.toolkit.arithmetic(cp_mask, 'multiply', regional, cp_parc)),
            ('combine', self.toolkit.arithmetic(cp_none, 'add', cp_parc, output)),
        ]
        try:
            for name, command in steps:
                self.runner.run(command, name)
        finally:
            for temp in (cp_mask, cp_none, cp_parc):
                temp.unlink(missing_ok=True)

        logger.info(f"  Output: {output}")
        return output
