#!/usr/bin/env python3
"""
Unit tests for file naming and the per-subject output layout.
"""

from pathlib import Path

import pytest

from fetalmas.naming import (
    CaseLayout,
    LabelScheme,
    StageStatus,
    image_stem,
    label_file_name,
    label_path_for,
    parcellation_name,
    split_image_name,
    stage_status,
)


class TestImageNames:

    def test_split_at_first_dot(self):
        assert split_image_name('/data/t2w_GA30_atlas.nii.gz') == ('t2w_GA30_atlas', '.nii.gz')

    def test_stem_without_extension(self):
        assert image_stem('case01') == 'case01'

    def test_label_file_name(self):
        assert label_file_name('t2w_GA30_atlas.nii', 'tissue') == 't2w_GA30_tissue.nii'

    def test_label_file_name_replaces_first_marker_only(self):
        assert label_file_name('a_atlas_atlas.nii.gz', 'regional') == 'a_regional_atlas.nii.gz'

    def test_label_path_in_template_directory(self):
        path = label_path_for(Path('/atlases/t2w_GA30_atlas.nii.gz'), 'tissueWMZ')
        assert path == Path('/atlases/t2w_GA30_tissueWMZ.nii.gz')

    def test_parcellation_name(self):
        assert parcellation_name('MAS-tissueWMZ-pvc_case01.nii.gz') == 'MAS-tissueWMZ-ParCP_case01.nii.gz'

    def test_parcellation_name_requires_pvc_marker(self):
        with pytest.raises(ValueError, match="Not a corrected"):
            parcellation_name('MAS-tissue_case01.nii.gz')


class TestLabelScheme:

    def test_output_prefix(self):
        assert LabelScheme('tissue').output_prefix == 'MAS-tissue'
        assert LabelScheme('regional', 'STUDY').output_prefix == 'STUDY-regional'


class TestCaseLayout:

    @pytest.fixture
    def layout(self, tmp_path):
        return CaseLayout(tmp_path, 'case01')

    def test_directories(self, layout, tmp_path):
        assert layout.warp_dir == tmp_path / 'case01' / 'template_rT'
        assert layout.log_dir == tmp_path / 'case01' / 'log'
        assert layout.seg_dir == tmp_path / 'case01' / 'seg'
        assert layout.pvc_dir == tmp_path / 'case01' / 'PVC'
        assert layout.calc_dir == tmp_path / 'case01' / 'calc'

    def test_registration_outputs(self, layout):
        assert layout.warped_atlas('t2w_GA30_atlas').name == 'rt2w_GA30_atlas_to_case01.nii.gz'
        assert layout.deformable_field('t2w_GA30_atlas').name == 'rt2w_GA30_atlas_to_case01Warp.nii.gz'
        assert layout.affine_transform('t2w_GA30_atlas').name == 'rt2w_GA30_atlas_to_case01Affine.txt'

    def test_warped_label(self, layout):
        warped = layout.warped_label(Path('/atlases/t2w_GA30_tissue.nii.gz'))
        assert warped == layout.warp_dir / 'rt2w_GA30_tissue_to_case01.nii.gz'

    def test_scheme_outputs(self, layout):
        scheme = LabelScheme('tissue')
        assert layout.atlas_manifest(scheme).name == 'atlas_for_MAS-tissue.txt'
        assert layout.label_manifest(scheme).name == 'labels_for_MAS-tissue.txt'
        assert layout.input_record(scheme, 30).name == 'inputGA-MAS-tissue_30.txt'
        assert layout.rerun_script(scheme).name == 'run-MAS-tissue_case01.sh'
        assert layout.fused(scheme) == layout.seg_dir / 'MAS-tissue_case01.nii.gz'
        assert layout.corrected(scheme) == layout.pvc_dir / 'MAS-tissue-pvc_case01.nii.gz'

    def test_parcellated_output(self, layout):
        corrected = layout.corrected(LabelScheme('tissue'))
        assert layout.parcellated(corrected) == layout.calc_dir / 'MAS-tissue-ParCP_case01.nii.gz'


class TestStageStatus:

    def test_pending_until_output_exists(self, tmp_path):
        output = tmp_path / 'out.nii.gz'
        assert stage_status(output) is StageStatus.PENDING
        output.touch()
        assert stage_status(output) is StageStatus.DONE
