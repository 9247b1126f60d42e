"""
File naming for the multi-atlas pipeline.

Pure functions mapping template names, label schemes and subjects to file
names and output paths. Nothing here touches the filesystem except
``stage_status``, which is the single place where "has this stage already
produced its output?" is decided.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Tuple, Union

ATLAS_MARKER = '_atlas'
WARPED_EXTENSION = '.nii.gz'
PVC_MARKER = '-pvc'
PARCELLATION_MARKER = '-ParCP'


class StageStatus(Enum):
    PENDING = 'pending'
    DONE = 'done'


def stage_status(output_path: Path) -> StageStatus:
    """A stage is DONE once its declared output exists; content is not inspected."""
    return StageStatus.DONE if Path(output_path).exists() else StageStatus.PENDING


def is_done(output_path: Path) -> bool:
    return stage_status(output_path) is StageStatus.DONE


@dataclass(frozen=True)
class LabelScheme:
    """One labelling taxonomy (e.g. tissue, regional) processed as its own pass."""
    suffix: str
    prefix: str = 'MAS'

    @property
    def output_prefix(self) -> str:
        """Prefix of every output of this scheme, e.g. ``MAS-tissue``."""
        return f'{self.prefix}-{self.suffix}'


def split_image_name(path: Union[str, Path]) -> Tuple[str, str]:
    """
    Split an image file name at its first dot.

    >>> split_image_name('/data/t2w_GA30_atlas.nii.gz')
    ('t2w_GA30_atlas', '.nii.gz')
    """
    name = Path(path).name
    stem, dot, rest = name.partition('.')
    return stem, dot + rest


def image_stem(path: Union[str, Path]) -> str:
    return split_image_name(path)[0]


def label_file_name(template_file_name: str, suffix: str) -> str:
    """
    Derive the label file name of an atlas template.

    The first ``_atlas`` marker in the stem is replaced by ``_<suffix>``; the
    extension is kept.

    >>> label_file_name('t2w_GA30_atlas.nii', 'tissue')
    't2w_GA30_tissue.nii'
    """
    stem, extension = split_image_name(template_file_name)
    return stem.replace(ATLAS_MARKER, f'_{suffix}', 1) + extension


def label_path_for(template_path: Path, suffix: str) -> Path:
    """Label file of a template for one scheme, in the template's directory."""
    template_path = Path(template_path)
    return template_path.parent / label_file_name(template_path.name, suffix)


def parcellation_name(pvc_file_name: str) -> str:
    """
    Name of the combined parcellated segmentation for a corrected tissue file.

    >>> parcellation_name('MAS-tissue-pvc_case01.nii.gz')
    'MAS-tissue-ParCP_case01.nii.gz'
    """
    head, marker, tail = pvc_file_name.rpartition(PVC_MARKER + '_')
    if not marker:
        raise ValueError(f"Not a corrected segmentation name: {pvc_file_name}")
    return f'{head}{PARCELLATION_MARKER}_{tail}'


class CaseLayout:
    """
    On-disk layout of one subject's working directory.

    ``<output_dir>/<name>/`` contains ``template_rT/`` (warped atlases and
    labels), ``log/`` (inputs, reproduction command, manifests), ``seg/``
    (fused outputs), ``PVC/`` (corrected outputs) and ``calc/`` (cortical plate
    parcellation).
    """

    def __init__(self, output_dir: Path, subject_name: str):
        self.output_dir = Path(output_dir)
        self.name = subject_name
        self.case_dir = self.output_dir / subject_name

    @property
    def warp_dir(self) -> Path:
        return self.case_dir / 'template_rT'

    @property
    def log_dir(self) -> Path:
        return self.case_dir / 'log'

    @property
    def seg_dir(self) -> Path:
        return self.case_dir / 'seg'

    @property
    def pvc_dir(self) -> Path:
        return self.case_dir / 'PVC'

    @property
    def calc_dir(self) -> Path:
        return self.case_dir / 'calc'

    # Registration / resampling, keyed by (atlas, subject)

    def transform_prefix(self, template_name: str) -> Path:
        return self.warp_dir / f'r{template_name}_to_{self.name}{WARPED_EXTENSION}'

    def warped_atlas(self, template_name: str) -> Path:
        return self.transform_prefix(template_name)

    def deformable_field(self, template_name: str) -> Path:
        return self.warp_dir / f'r{template_name}_to_{self.name}Warp.nii.gz'

    def affine_transform(self, template_name: str) -> Path:
        return self.warp_dir / f'r{template_name}_to_{self.name}Affine.txt'

    def warped_label(self, label_path: Path) -> Path:
        return self.warp_dir / f'r{image_stem(label_path)}_to_{self.name}{WARPED_EXTENSION}'

    # Per (subject, scheme)

    def atlas_manifest(self, scheme: LabelScheme) -> Path:
        return self.log_dir / f'atlas_for_{scheme.output_prefix}.txt'

    def label_manifest(self, scheme: LabelScheme) -> Path:
        return self.log_dir / f'labels_for_{scheme.output_prefix}.txt'

    def input_record(self, scheme: LabelScheme, ga: int) -> Path:
        return self.log_dir / f'inputGA-{scheme.output_prefix}_{ga}.txt'

    def rerun_script(self, scheme: LabelScheme) -> Path:
        return self.log_dir / f'run-{scheme.output_prefix}_{self.name}.sh'

    def fused(self, scheme: LabelScheme) -> Path:
        return self.seg_dir / f'{scheme.output_prefix}_{self.name}{WARPED_EXTENSION}'

    def corrected(self, scheme: LabelScheme) -> Path:
        return self.pvc_dir / f'{scheme.output_prefix}{PVC_MARKER}_{self.name}{WARPED_EXTENSION}'

    def corrected_glob(self, scheme: LabelScheme) -> str:
        """Pattern matching the corrected outputs of every scheme derived from ``scheme``."""
        return f'{scheme.output_prefix}*{PVC_MARKER}_{self.name}{WARPED_EXTENSION}'

    def parcellated(self, corrected_path: Path) -> Path:
        return self.calc_dir / parcellation_name(Path(corrected_path).name)
