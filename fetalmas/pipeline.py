#!/usr/bin/env python3
"""
Multi-atlas segmentation pipeline.

For each label scheme, every subject is registered to its GA-matched atlases
and the atlas images and labels are warped into subject space. Once all
subjects have been through registration for that scheme, each is fused (and,
for tissue schemes, partial-volume corrected and checked). After all schemes,
the cortical plate of each subject is parcellated and the run is reported.

Every stage is skipped when its output already exists, so an interrupted run
resumes where it stopped.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from fetalmas.atlas.library import AtlasEntry, load_atlas_library
from fetalmas.atlas.selection import MatchedAtlas, select_atlases
from fetalmas.config import PipelineConfig
from fetalmas.naming import CaseLayout, LabelScheme, image_stem
from fetalmas.registration.propagation import RegistrationScheduler, TransformApplier
from fetalmas.reporting.summary import Reporter
from fetalmas.segmentation.fusion import SegmentationRunner
from fetalmas.segmentation.lists import AtlasLabelManifest, assemble_manifest
from fetalmas.segmentation.parcellation import Parcellator
from fetalmas.segmentation.pvc import PVCValidator
from fetalmas.subjects import Subject, SubjectError, load_subject_lines, parse_subject_line
from fetalmas.tools import Toolkit
from fetalmas.utils.commands import CommandRunner, JobResult, check_dependencies

logger = logging.getLogger(__name__)


@dataclass
class SubjectContext:
    """Working data for one subject and one label scheme; never shared across subjects."""
    subject: Subject
    layout: CaseLayout
    scheme: LabelScheme
    matches: List[MatchedAtlas] = field(default_factory=list)
    manifest: Optional[AtlasLabelManifest] = None
    jobs: List[JobResult] = field(default_factory=list)


class MASPipeline:
    """
    Run the pipeline over a subject manifest.

    Parameters
    ----------
    config : PipelineConfig
        Immutable run configuration
    subject_manifest : Path
        Text file of ``<image> <GA>`` lines
    output_dir : Path
        Root of all working and output files
    runner : CommandRunner, optional
        Executes collaborator commands (default: real subprocesses)
    invocation : sequence of str, optional
        Command line of this run, archived under ``tools/``
    """

    def __init__(
        self,
        config: PipelineConfig,
        subject_manifest: Path,
        output_dir: Path,
        runner: Optional[CommandRunner] = None,
        invocation: Optional[Sequence[str]] = None
    ):
        self.config = config
        self.subject_manifest = Path(subject_manifest)
        self.output_dir = Path(output_dir).resolve()
        self.runner = runner or CommandRunner()
        self.invocation = list(invocation) if invocation else []
        self.toolkit = Toolkit(config)
        self.reporter = Reporter()
        self.archived_atlas_manifest = config.atlas_manifest
        self._subject_lines: List[str] = []

        self.registration = RegistrationScheduler(self.toolkit, self.runner, config.max_threads)
        self.transforms = TransformApplier(self.toolkit, self.runner, config.max_threads)
        self.segmentation = SegmentationRunner(self.toolkit, self.runner)
        self.pvc = PVCValidator(config, self.toolkit, self.runner)
        self.parcellator = Parcellator(config, self.toolkit, self.runner)

    @property
    def tools_dir(self) -> Path:
        return self.output_dir / 'tools'

    def check_dependencies(self) -> None:
        check_dependencies(self.toolkit.required_binaries())

    def prepare(self) -> List[AtlasEntry]:
        """
        Load inputs and set up the output directory.

        Raises
        ------
        PipelineError
            If a manifest is malformed or an atlas template is missing
        """
        self._subject_lines = load_subject_lines(self.subject_manifest)
        atlases = load_atlas_library(self.config.atlas_manifest, self.config.atlas_root)

        self.tools_dir.mkdir(parents=True, exist_ok=True)
        archived = self.tools_dir / self.config.atlas_manifest.name
        shutil.copyfile(self.config.atlas_manifest, archived)
        self.archived_atlas_manifest = archived
        if self.invocation:
            (self.tools_dir / 'invocation.txt').write_text(' '.join(self.invocation) + '\n')
        return atlases

    def run(self) -> Reporter:
        atlases = self.prepare()
        lines = self._subject_lines
        logger.info("Making case directories and starting template propagation...")

        for scheme in self.config.schemes:
            logger.info("")
            logger.info(f"## Process registrations for all cases for atlas segmentation {scheme.suffix} ##")
            for line in lines:
                self.register_subject(line, scheme, atlases)

            if not self.config.segmentation:
                logger.info("Segmentation turned off (stages.segmentation in the configuration)")
                continue

            logger.info("Starting STAPLE segmentation...")
            for line in lines:
                self.segment_subject(line, scheme)

        logger.info("")
        logger.info("# # # Post-processing steps begin # # #")
        for line in lines:
            self.parcellate_subject(line)

        self.reporter.report(self.output_dir)
        return self.reporter

    def _parse(self, line: str) -> Optional[Subject]:
        try:
            return parse_subject_line(line)
        except SubjectError as e:
            logger.error(f"  ERROR: {e}")
            logger.error("  Skipping to next input")
            return None

    def _record_jobs(self, ctx: SubjectContext) -> None:
        if self.config.strict:
            self.reporter.add_job_failures(ctx.subject.name, ctx.scheme.output_prefix, ctx.jobs)

    def _set_up_case(self, ctx: SubjectContext) -> None:
        layout = ctx.layout
        layout.log_dir.mkdir(parents=True, exist_ok=True)
        layout.warp_dir.mkdir(parents=True, exist_ok=True)

        input_record = layout.input_record(ctx.scheme, ctx.subject.ga)
        input_record.write_text(ctx.subject.line + '\n')

        rerun = (
            f"mas-pipeline -a {self.archived_atlas_manifest} "
            f"-l \"{' '.join(self.config.label_suffixes)}\" -p {self.config.output_prefix} "
            f"-- {input_record} {self.output_dir} {self.config.max_threads}\n"
        )
        layout.rerun_script(ctx.scheme).write_text(rerun)

        image_copy = layout.case_dir / ctx.subject.image_path.name
        if not image_copy.exists():
            shutil.copyfile(ctx.subject.image_path, image_copy)

    def register_subject(self, line: str, scheme: LabelScheme, atlases: List[AtlasEntry]) -> Optional[SubjectContext]:
        """Registration, transforms and atlas/label lists for one subject and scheme."""
        logger.info("")
        logger.info(f"# Input case: {line}  (atlas seg: {scheme.suffix})")
        subject = self._parse(line)
        if subject is None:
            return None

        ctx = SubjectContext(subject=subject, layout=CaseLayout(self.output_dir, subject.name), scheme=scheme)
        self._set_up_case(ctx)

        ctx.matches = select_atlases(atlases, subject, scheme.suffix)
        if not ctx.matches:
            logger.warning(
                f"  Didn't find ANY template images of similar GA (GA={subject.ga}). "
                "Make sure you have the right template lists selected."
            )
            logger.warning("  Moving on to next case because there are no matches.")
            ctx.manifest = assemble_manifest(ctx.layout, scheme, ctx.matches)
            return ctx

        ctx.jobs += self.registration.run(subject, ctx.layout, ctx.matches)
        ctx.jobs += self.transforms.run(subject, ctx.layout, ctx.matches)
        ctx.manifest = assemble_manifest(ctx.layout, scheme, ctx.matches)
        self._record_jobs(ctx)
        return ctx

    def segment_subject(self, line: str, scheme: LabelScheme) -> Optional[SubjectContext]:
        """Fusion, then correction and its check for tissue schemes."""
        subject = self._parse(line)
        if subject is None:
            return None
        logger.info(f"segmentation scheme: {scheme.output_prefix}  image: {subject.image_path}")

        ctx = SubjectContext(subject=subject, layout=CaseLayout(self.output_dir, subject.name), scheme=scheme)
        fusion = self.segmentation.run(subject, ctx.layout, scheme)
        if fusion.job is not None:
            ctx.jobs.append(fusion.job)
        self._record_jobs(ctx)

        if not fusion.eligible:
            return ctx
        if not self.config.pvc:
            logger.info("  Partial volume correction is turned off (stages.pvc in the configuration)")
            return ctx

        outcome = self.pvc.run(subject, ctx.layout, scheme)
        if outcome is not None:
            self.reporter.add_pvc(subject.name, scheme.output_prefix, outcome)
        return ctx

    def parcellate_subject(self, line: str) -> None:
        name = image_stem(line.split()[0])
        logger.info(f"name : {name}")
        self.parcellator.run(CaseLayout(self.output_dir, name))
