#!/usr/bin/env python3
"""
Unit tests for the end-to-end pipeline run, with every collaborator faked.
"""

from pathlib import Path

import pytest

from fetalmas.naming import CaseLayout, LabelScheme
from fetalmas.pipeline import MASPipeline
from fetalmas.segmentation.lists import read_manifest
from fetalmas.subjects import ManifestError
from conftest import FakeRunner, touch


@pytest.fixture
def output_dir(tmp_path):
    return (tmp_path / 'out').resolve()


@pytest.fixture
def subject_manifest(tmp_path, subject_image):
    manifest = tmp_path / 'inputs.txt'
    manifest.write_text(f'{subject_image} 30\n')
    return manifest


@pytest.fixture
def layout(output_dir):
    return CaseLayout(output_dir, 'case01')


def good_volumes(layout):
    tissue = LabelScheme('tissue')
    return {str(layout.fused(tissue)): 100.0, str(layout.corrected(tissue)): 95.0}


class TestMASPipeline:

    def test_full_run(self, make_config, subject_manifest, output_dir, layout):
        runner = FakeRunner(volumes=good_volumes(layout))
        reporter = MASPipeline(make_config(), subject_manifest, output_dir, runner=runner).run()

        assert layout.fused(LabelScheme('tissue')).exists()
        assert layout.fused(LabelScheme('regional')).exists()
        assert layout.corrected(LabelScheme('tissue')).exists()
        assert (layout.calc_dir / 'MAS-tissue-ParCP_case01.nii.gz').exists()
        # no tissueWMZ labels in the atlas library, so nothing to fuse
        assert not layout.fused(LabelScheme('tissueWMZ')).exists()

        assert len(runner.calls('ANTS')) == 3
        assert len(runner.calls('crlProbabilisticGMMSTAPLE')) == 2
        assert len(runner.calls('crlCorrectFetalPartialVoluming')) == 1
        assert reporter.pvc_failures == []

    def test_rerun_invokes_no_processing(self, make_config, subject_manifest, output_dir, layout):
        runner = FakeRunner(volumes=good_volumes(layout))
        MASPipeline(make_config(), subject_manifest, output_dir, runner=runner).run()
        first = len(runner.commands)

        MASPipeline(make_config(), subject_manifest, output_dir, runner=runner).run()
        rerun = {Path(c[0]).name for c in runner.commands[first:]}
        # only the correction check is repeated
        assert rerun <= {'crlComputeVolume'}

    def test_case_setup(self, make_config, subject_manifest, subject_image, output_dir, layout, atlas_root):
        pipeline = MASPipeline(
            make_config(), subject_manifest, output_dir, runner=FakeRunner(),
            invocation=['mas-pipeline', '--', str(subject_manifest), str(output_dir), '2'],
        )
        pipeline.run()
        tissue = LabelScheme('tissue')

        assert (layout.case_dir / 'case01.nii.gz').exists()
        assert layout.input_record(tissue, 30).read_text() == f'{subject_image} 30\n'
        rerun = layout.rerun_script(tissue).read_text()
        assert rerun.startswith(f'mas-pipeline -a {output_dir / "tools" / "tlist.txt"} ')
        assert '-l "tissue tissueWMZ regional" -p MAS --' in rerun
        assert (output_dir / 'tools' / 'tlist.txt').read_text() == (atlas_root / 'tlist.txt').read_text()
        assert (output_dir / 'tools' / 'invocation.txt').exists()

    def test_pvc_failure_reported(self, make_config, subject_manifest, output_dir, layout):
        tissue = LabelScheme('tissue')
        runner = FakeRunner(volumes={str(layout.fused(tissue)): 100.0, str(layout.corrected(tissue)): 99.5})
        reporter = MASPipeline(make_config(), subject_manifest, output_dir, runner=runner).run()

        assert [r.outcome.output_path for r in reporter.pvc_failures] == [layout.corrected(tissue)]
        assert (output_dir / 'logs' / 'pvc_report.csv').exists()

    def test_bad_lines_skipped(self, make_config, tmp_path, subject_image, output_dir, caplog):
        manifest = tmp_path / 'inputs.txt'
        manifest.write_text(f'{tmp_path / "missing.nii.gz"} 30\n{subject_image}\n{subject_image} 30\n')
        runner = FakeRunner()
        MASPipeline(make_config(label_suffixes=('tissue',)), manifest, output_dir, runner=runner).run()

        assert "not found" in caplog.text
        assert "no GA" in caplog.text
        assert len(runner.calls('ANTS')) == 3

    def test_no_matching_atlases(self, make_config, tmp_path, subject_image, output_dir, caplog):
        manifest = tmp_path / 'inputs.txt'
        manifest.write_text(f'{subject_image} 40\n')
        runner = FakeRunner()
        MASPipeline(make_config(label_suffixes=('tissue',)), manifest, output_dir, runner=runner).run()

        assert runner.calls('ANTS') == []
        assert runner.calls('crlProbabilisticGMMSTAPLE') == []
        assert "no matches" in caplog.text

    def test_no_matching_atlases_clears_stale_lists(self, make_config, tmp_path, subject_image, output_dir, layout):
        tissue = LabelScheme('tissue')
        touch(layout.atlas_manifest(tissue))
        layout.atlas_manifest(tissue).write_text('/old/atlas1.nii.gz\n/old/atlas2.nii.gz\n')
        layout.label_manifest(tissue).write_text('/old/label1.nii.gz\n/old/label2.nii.gz\n')
        manifest = tmp_path / 'inputs.txt'
        manifest.write_text(f'{subject_image} 40\n')
        runner = FakeRunner()
        MASPipeline(make_config(label_suffixes=('tissue',)), manifest, output_dir, runner=runner).run()

        assert len(read_manifest(layout, tissue)) == 0
        assert runner.calls('crlProbabilisticGMMSTAPLE') == []

    def test_segmentation_switched_off(self, make_config, subject_manifest, output_dir):
        runner = FakeRunner()
        MASPipeline(make_config(segmentation=False), subject_manifest, output_dir, runner=runner).run()
        assert len(runner.calls('ANTS')) == 3
        assert runner.calls('crlProbabilisticGMMSTAPLE') == []
        assert runner.calls('crlCorrectFetalPartialVoluming') == []

    def test_pvc_switched_off(self, make_config, subject_manifest, output_dir):
        runner = FakeRunner()
        reporter = MASPipeline(make_config(pvc=False), subject_manifest, output_dir, runner=runner).run()
        assert runner.calls('crlCorrectFetalPartialVoluming') == []
        assert reporter.pvc_records == []

    def test_strict_mode_reports_failed_jobs(self, make_config, subject_manifest, output_dir):
        runner = FakeRunner(failing={'ANTS'})
        reporter = MASPipeline(
            make_config(strict=True, label_suffixes=('tissue',)), subject_manifest, output_dir, runner=runner
        ).run()
        assert len(reporter.job_failures) == 3
        assert all(f.job.name.startswith('register') for f in reporter.job_failures)

    def test_failed_jobs_ignored_by_default(self, make_config, subject_manifest, output_dir):
        runner = FakeRunner(failing={'ANTS'})
        reporter = MASPipeline(
            make_config(label_suffixes=('tissue',)), subject_manifest, output_dir, runner=runner
        ).run()
        assert reporter.job_failures == []

    def test_registration_batches(self, make_config, subject_manifest, output_dir):
        pipeline = MASPipeline(make_config(label_suffixes=('tissue',)), subject_manifest, output_dir, runner=FakeRunner())
        pipeline.run()
        assert pipeline.registration.batch_sizes == [2, 1]

    def test_atlas_library_checked_before_any_subject(self, make_config, subject_manifest, output_dir, atlas_root):
        (atlas_root / 't2w_GA32_atlas.nii.gz').unlink()
        runner = FakeRunner()
        with pytest.raises(ManifestError):
            MASPipeline(make_config(), subject_manifest, output_dir, runner=runner).run()
        assert runner.commands == []
        assert not (output_dir / 'case01').exists()
