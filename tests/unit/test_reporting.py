#!/usr/bin/env python3
"""
Unit tests for the end-of-run report.
"""

from pathlib import Path

import pandas as pd
import pytest

from fetalmas.reporting import Reporter
from fetalmas.reporting.summary import REPORT_COLUMNS
from fetalmas.segmentation.pvc import PVCOutcome, Verdict
from fetalmas.utils.commands import JobResult


def outcome(name, before, after, verdict):
    reduction = None if not before else 100.0 * (1 - after / before)
    return PVCOutcome(Path(f'/out/{name}/PVC/MAS-tissue-pvc_{name}.nii.gz'), before, after, reduction, verdict)


class TestReporter:

    def test_no_issues(self):
        reporter = Reporter()
        reporter.add_pvc('case01', 'MAS-tissue', outcome('case01', 100.0, 90.0, Verdict.SUCCESS))
        lines = reporter.summary_lines()
        assert lines[0] == "Report of partial volume success/failure:"
        assert "No PVC issues detected" in lines

    def test_failures_listed(self):
        reporter = Reporter()
        reporter.add_pvc('case01', 'MAS-tissue', outcome('case01', 100.0, 90.0, Verdict.SUCCESS))
        reporter.add_pvc('case02', 'MAS-tissue', outcome('case02', 100.0, 99.0, Verdict.FAILURE))
        lines = reporter.summary_lines()
        assert '/out/case02/PVC/MAS-tissue-pvc_case02.nii.gz' in lines
        assert '/out/case01/PVC/MAS-tissue-pvc_case01.nii.gz' not in lines
        assert "No PVC issues detected" not in lines

    def test_job_failures(self):
        reporter = Reporter()
        reporter.add_job_failures('case01', 'MAS-tissue', [
            JobResult('register t2w_GA30_atlas', ['ANTS'], 1),
            JobResult('register t2w_GA31_atlas', ['ANTS'], 0),
        ])
        assert len(reporter.job_failures) == 1
        assert any('exit status 1' in line for line in reporter.summary_lines())

    def test_csv_written(self, tmp_path):
        reporter = Reporter()
        reporter.add_pvc('case02', 'MAS-tissue', outcome('case02', 100.0, 99.0, Verdict.FAILURE))
        reporter.report(tmp_path)

        df = pd.read_csv(tmp_path / 'logs' / 'pvc_report.csv')
        assert list(df.columns) == REPORT_COLUMNS
        assert df.loc[0, 'verdict'] == 'Failure'
        assert df.loc[0, 'reduction_percent'] == pytest.approx(1.0)

    def test_no_csv_without_checks(self, tmp_path):
        Reporter().report(tmp_path)
        assert not (tmp_path / 'logs' / 'pvc_report.csv').exists()
