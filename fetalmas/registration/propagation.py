"""
Atlas-to-subject registration and label propagation.

This module provides:
1. RegistrationScheduler - ANTS registration of every matched atlas to a subject
2. TransformApplier - warping atlas grayscale and labels into subject space

Both launch their jobs through a BatchScheduler, so at most ``max_workers``
external processes run at once and each batch is waited on in full before the
next is started. A job is only issued when its output is missing; a job that
exits without producing its output is simply issued again on the next run.
"""

import logging
from functools import partial
from typing import List, Sequence

from fetalmas.atlas.selection import MatchedAtlas
from fetalmas.naming import CaseLayout, is_done
from fetalmas.subjects import Subject
from fetalmas.tools import Toolkit
from fetalmas.utils.commands import CommandRunner, JobResult
from fetalmas.utils.scheduler import BatchScheduler, Job

logger = logging.getLogger(__name__)


class _BatchedStage:
    """Shared plumbing: a toolkit, a runner and a fresh scheduler per pass."""

    def __init__(self, toolkit: Toolkit, runner: CommandRunner, max_workers: int):
        self.toolkit = toolkit
        self.runner = runner
        self.max_workers = max_workers
        self.batch_sizes: List[int] = []

    def _job(self, name: str, command: List[str]) -> Job:
        return Job(name=name, run=partial(self.runner.run, command, name))

    def _run(self, jobs: List[Job]) -> List[JobResult]:
        scheduler = BatchScheduler(self.max_workers)
        results = scheduler.run_batches(jobs)
        self.batch_sizes = scheduler.batch_sizes
        return results


class RegistrationScheduler(_BatchedStage):
    """
    Register each matched atlas template to the subject image.

    The job for atlas ``T`` and subject ``S`` is keyed by the warped grayscale
    ``template_rT/rT_to_S.nii.gz``; if it exists the registration is skipped.
    ANTS writes ``rT_to_SWarp.nii.gz`` and ``rT_to_SAffine.txt`` next to it.
    """

    def pending(self, layout: CaseLayout, matches: Sequence[MatchedAtlas]) -> List[MatchedAtlas]:
        return [m for m in matches if not is_done(layout.warped_atlas(m.template_name))]

    def run(self, subject: Subject, layout: CaseLayout, matches: Sequence[MatchedAtlas]) -> List[JobResult]:
        layout.warp_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Starting non-rigid registration (ANTS)...")

        todo = self.pending(layout, matches)
        for match in matches:
            if match not in todo:
                logger.info(f"  Found transform for {match.template_name} to {subject.name}. Skipping...")

        jobs = []
        for match in todo:
            logger.info(f"  ANTS register {match.template_name} to {subject.name}")
            command = self.toolkit.registration(
                fixed=subject.image_path,
                moving=match.atlas.template_path,
                output_prefix=layout.transform_prefix(match.template_name),
            )
            jobs.append(self._job(f'register {match.template_name}', command))

        return self._run(jobs)


class TransformApplier(_BatchedStage):
    """
    Warp atlas grayscale and labels into subject space.

    Runs after every registration job of the subject has been waited on. The
    grayscale pass completes before the label pass starts, and the labels of
    atlas ``i`` are always warped with atlas ``i``'s own transform pair.
    """

    def apply_grayscale(self, subject: Subject, layout: CaseLayout, matches: Sequence[MatchedAtlas]) -> List[JobResult]:
        """Re-create warped grayscale images a registration job failed to write."""
        logger.info("Applying transformations to templates...")
        jobs = []
        for match in matches:
            name = match.template_name
            warped = layout.warped_atlas(name)
            if is_done(warped):
                logger.debug(f"  {warped.name} has been transformed. Skipping")
                continue
            logger.info(f"  Applying transform: {match.atlas.template_path} to {subject.name}...")
            command = self.toolkit.resample(
                source=match.atlas.template_path,
                output=warped,
                reference=subject.image_path,
                deformable_field=layout.deformable_field(name),
                affine_transform=layout.affine_transform(name),
            )
            jobs.append(self._job(f'warp {name}', command))
        return self._run(jobs)

    def apply_labels(self, subject: Subject, layout: CaseLayout, matches: Sequence[MatchedAtlas]) -> List[JobResult]:
        """Warp each atlas's label file with nearest-neighbour interpolation."""
        logger.info("Applying transformations to template labels")
        jobs = []
        for match in matches:
            warped_label = layout.warped_label(match.label_path)
            if not match.label_exists:
                logger.info(f"  No label file for {match.template_name}")
                continue
            if is_done(warped_label):
                logger.debug(f"  {warped_label} already exists. Skipping...")
                continue
            logger.info(f"  Transforming {match.label_path} to {subject.name}")
            command = self.toolkit.resample(
                source=match.label_path,
                output=warped_label,
                reference=subject.image_path,
                deformable_field=layout.deformable_field(match.template_name),
                affine_transform=layout.affine_transform(match.template_name),
                label_preserving=True,
            )
            jobs.append(self._job(f'warp labels {match.label_path.name}', command))
        return self._run(jobs)

    def run(self, subject: Subject, layout: CaseLayout, matches: Sequence[MatchedAtlas]) -> List[JobResult]:
        results = self.apply_grayscale(subject, layout, matches)
        results += self.apply_labels(subject, layout, matches)
        return results
