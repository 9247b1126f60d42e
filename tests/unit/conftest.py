"""
Shared fixtures: a small atlas library on disk and a fake command runner that
stands in for the external collaborators by touching their outputs.
"""

import threading
from pathlib import Path

import pytest

from fetalmas.config import PipelineConfig, ToolPaths
from fetalmas.utils.commands import JobResult


TOOLS = ToolPaths(
    registration='ANTS',
    resample='WarpImageMultiTransform',
    fusion='crlProbabilisticGMMSTAPLE',
    algebra='crlImageAlgebra',
    relabel='crlRelabelImages',
    pvc='crlCorrectFetalPartialVoluming',
    volume='crlComputeVolume',
)


def touch(path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch()


class FakeRunner:
    """
    Records every command and creates the files the real binary would write.

    ``volumes`` maps a segmentation path to the volume crlComputeVolume
    reports for it. Binaries listed in ``failing`` exit 1 without output.
    """

    def __init__(self, volumes=None, failing=()):
        self.commands = []
        self.volumes = dict(volumes or {})
        self.failing = set(failing)
        self._lock = threading.Lock()

    def run(self, command, name=''):
        command = [str(part) for part in command]
        binary = Path(command[0]).name
        with self._lock:
            self.commands.append(command)

        if binary in self.failing:
            return JobResult(name=name, command=command, returncode=1)

        stdout = ''
        if binary == 'ANTS':
            prefix = command[command.index('-o') + 1]
            base = prefix[:-len('.nii.gz')]
            touch(base + 'Warp.nii.gz')
            touch(base + 'Affine.txt')
        elif binary == 'WarpImageMultiTransform':
            touch(command[3])
        elif binary == 'crlProbabilisticGMMSTAPLE':
            touch(command[command.index('-O') + 1])
        elif binary == 'crlCorrectFetalPartialVoluming':
            touch(command[3])
        elif binary == 'crlComputeVolume':
            stdout = f"Volume of label {command[2]}: {self.volumes.get(command[1], 0.0)}\n"
        elif binary == 'crlRelabelImages':
            touch(command[5])
        elif binary == 'crlImageAlgebra':
            touch(command[4])
        return JobResult(name=name, command=command, returncode=0, stdout=stdout)

    def calls(self, binary):
        return [c for c in self.commands if Path(c[0]).name == binary]


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def atlas_root(tmp_path):
    """Atlases at GA 28-32, each with tissue and regional labels."""
    root = tmp_path / 'atlases'
    root.mkdir()
    lines = []
    for ga in range(28, 33):
        touch(root / f't2w_GA{ga}_atlas.nii.gz')
        touch(root / f't2w_GA{ga}_tissue.nii.gz')
        touch(root / f't2w_GA{ga}_regional.nii.gz')
        lines.append(f't2w_GA{ga}_atlas.nii.gz {ga}')
    (root / 'tlist.txt').write_text('\n'.join(lines) + '\n')
    return root


@pytest.fixture
def make_config(atlas_root):
    """Build a PipelineConfig over the fixture atlas library."""
    def _make(**changes):
        config = PipelineConfig(
            atlas_root=atlas_root,
            atlas_manifest=atlas_root / 'tlist.txt',
            tools=TOOLS,
            max_threads=2,
        )
        return config.with_overrides(**changes)
    return _make


@pytest.fixture
def subject_image(tmp_path):
    image = tmp_path / 'inputs' / 'case01.nii.gz'
    touch(image)
    return image
