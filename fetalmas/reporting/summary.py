"""
End-of-run report.

Collects every PVC check (and, in strict mode, every collaborator job that
exited with a non-zero status) for the whole run, prints the summary and
writes the PVC checks to ``<output_dir>/logs/pvc_report.csv``.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import pandas as pd

from fetalmas.segmentation.pvc import PVCOutcome
from fetalmas.utils.commands import JobResult

logger = logging.getLogger(__name__)

REPORT_COLUMNS = [
    'subject', 'scheme', 'output', 'before_volume', 'after_volume', 'reduction_percent', 'verdict',
]


@dataclass(frozen=True)
class PVCRecord:
    subject: str
    scheme: str
    outcome: PVCOutcome


@dataclass(frozen=True)
class JobFailure:
    subject: str
    scheme: str
    job: JobResult


class Reporter:

    def __init__(self):
        self.pvc_records: List[PVCRecord] = []
        self.job_failures: List[JobFailure] = []

    def add_pvc(self, subject: str, scheme: str, outcome: PVCOutcome) -> None:
        self.pvc_records.append(PVCRecord(subject, scheme, outcome))

    def add_job_failures(self, subject: str, scheme: str, results: List[JobResult]) -> None:
        for result in results:
            if not result.ok:
                self.job_failures.append(JobFailure(subject, scheme, result))

    @property
    def pvc_failures(self) -> List[PVCRecord]:
        return [r for r in self.pvc_records if r.outcome.failed]

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                'subject': r.subject,
                'scheme': r.scheme,
                'output': str(r.outcome.output_path),
                'before_volume': r.outcome.before_volume,
                'after_volume': r.outcome.after_volume,
                'reduction_percent': r.outcome.reduction_percent,
                'verdict': r.outcome.verdict.value,
            }
            for r in self.pvc_records
        ]
        return pd.DataFrame(rows, columns=REPORT_COLUMNS)

    def write_csv(self, output_dir: Path) -> Optional[Path]:
        if not self.pvc_records:
            return None
        path = Path(output_dir) / 'logs' / 'pvc_report.csv'
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().to_csv(path, index=False)
        return path

    def summary_lines(self) -> List[str]:
        lines = ["Report of partial volume success/failure:"]
        failures = self.pvc_failures
        if failures:
            lines.append(
                "A problem was detected with the output of PVC for the following cases. "
                "Check to make sure it is adjusting segmentations as intended"
            )
            lines.extend(str(r.outcome.output_path) for r in failures)
        else:
            lines.append("No PVC issues detected")

        if self.job_failures:
            lines.append("External jobs that exited with an error:")
            lines.extend(
                f"{f.subject} [{f.scheme}] {f.job.name}: exit status {f.job.returncode}"
                for f in self.job_failures
            )
        return lines

    def report(self, output_dir: Optional[Path] = None) -> List[str]:
        """Print the summary to the log and write the CSV when ``output_dir`` is given."""
        lines = self.summary_lines()
        for line in lines:
            logger.info(line)
        if output_dir is not None:
            csv_path = self.write_csv(output_dir)
            if csv_path is not None:
                logger.info(f"PVC report saved to: {csv_path}")
        return lines
