#!/usr/bin/env python3
"""
Command lines for the external collaborators.

- ANTS: deformable registration of an atlas template to a subject
- WarpImageMultiTransform: resampling with an ANTS affine + warp pair
- crlProbabilisticGMMSTAPLE: probabilistic multi-atlas label fusion
- crlCorrectFetalPartialVoluming: partial volume correction
- crlComputeVolume: volume of one label
- crlRelabelImages / crlImageAlgebra: relabelling and voxelwise arithmetic

Only the argument lists are built here; execution goes through
fetalmas.utils.commands.CommandRunner.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence

from fetalmas.config import PipelineConfig

ARITHMETIC_OPS = ('multiply', 'add')


class Toolkit:
    """
    Builds collaborator command lines from the run configuration.

    Parameters
    ----------
    config : PipelineConfig
        Run configuration (tool paths and fixed parameters)
    """

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.tools = config.tools

    def required_binaries(self) -> Dict[str, str]:
        """Binaries the configured stages will call, keyed by role."""
        tools = self.tools
        required = {
            'registration': tools.registration,
            'resample': tools.resample,
            'algebra': tools.algebra,
            'relabel': tools.relabel,
        }
        if self.config.segmentation:
            required['fusion'] = tools.fusion
            if self.config.pvc:
                required['pvc'] = tools.pvc
                if self.config.volume_backend == 'crkit':
                    required['volume'] = tools.volume
        return required

    def registration(self, fixed: Path, moving: Path, output_prefix: Path) -> List[str]:
        """ANTS registration of ``moving`` (atlas) onto ``fixed`` (subject)."""
        params = self.config.registration
        metric = f'PR[{fixed},{moving},{params.metric_weight},{params.metric_radius}]'
        return [
            self.tools.registration, str(params.dimension),
            '-m', metric,
            '-o', str(output_prefix),
            '-r', params.regularization,
            '--affine-metric-type', params.affine_metric,
            '-i', params.iterations,
            '-t', params.transformation,
        ]

    def resample(
        self,
        source: Path,
        output: Path,
        reference: Path,
        deformable_field: Path,
        affine_transform: Path,
        label_preserving: bool = False
    ) -> List[str]:
        """Apply an atlas's transform pair; labels use nearest-neighbour interpolation."""
        cmd = [
            self.tools.resample, str(self.config.registration.dimension),
            str(source), str(output),
            '-R', str(reference),
            str(deformable_field), str(affine_transform),
        ]
        if label_preserving:
            cmd.append('--use-NN')
        return cmd

    def fusion(self, label_manifest: Path, target: Path, atlas_manifest: Path, output: Path) -> List[str]:
        bx, by, bz = self.config.block_size
        ox, oy, oz = self.config.overlap
        return [
            self.tools.fusion,
            '-S', str(label_manifest),
            '-T', str(target),
            '-I', str(atlas_manifest),
            '-O', str(output),
            '-x', str(bx), '-y', str(by), '-z', str(bz),
            '-X', str(ox), '-Y', str(oy), '-Z', str(oz),
            '-p', str(self.config.max_threads),
        ]

    def correction(self, target: Path, segmentation: Path, output: Path) -> List[str]:
        return [self.tools.pvc, str(target), str(segmentation), str(output), str(self.config.pvc_strength)]

    def volume(self, segmentation: Path, label: int) -> List[str]:
        return [self.tools.volume, str(segmentation), str(label)]

    def relabel(
        self,
        image: Path,
        reference: Path,
        from_labels: Sequence[int],
        to_labels: Sequence[int],
        output: Path,
        default: Optional[int] = None
    ) -> List[str]:
        """Map ``from_labels`` to ``to_labels``; other voxels become ``default`` if given."""
        if len(from_labels) != len(to_labels):
            raise ValueError("from_labels and to_labels must have the same length")
        cmd = [
            self.tools.relabel,
            str(image), str(reference),
            ' '.join(str(v) for v in from_labels),
            ' '.join(str(v) for v in to_labels),
            str(output),
        ]
        if default is not None:
            cmd.append(str(default))
        return cmd

    def arithmetic(self, a: Path, op: str, b: Path, output: Path) -> List[str]:
        if op not in ARITHMETIC_OPS:
            raise ValueError(f"op must be one of {ARITHMETIC_OPS}, got {op!r}")
        return [self.tools.algebra, str(a), op, str(b), str(output)]
