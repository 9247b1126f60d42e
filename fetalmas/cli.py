#!/usr/bin/env python3
"""
Command line entry point for the fetal multi-atlas segmentation pipeline.

Usage:
    mas-pipeline [-h] [-a AtlasList.txt] [-l "tissue regional"] [-p PREFIX] \\
        -- <Imagelist> <OutputDir> <MaxThreads>

Example:
    mas-pipeline -p MAS -- inputs.txt /data/fetal/mas 8
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from fetalmas.config import PipelineConfig, PipelineError, load_config
from fetalmas.pipeline import MASPipeline
from fetalmas.utils.logs import setup_logging

logger = logging.getLogger('fetalmas.cli')

EPILOG = """\
  -a  structural atlas text list, formatted like:
          PATH/t2w_GA30_atlas.nii.gz 30
          PATH/t2w_GA31_atlas.nii.gz 31 ... etc
      paths are relative to the atlas root (paths.atlas_root, default $FETALREF)
  -l  atlas label suffix(es). Label files need to be in the same directory as
      the atlases and named like:
          PATH/t2w_GA30_SUFFIX.nii.gz
          PATH/t2w_GA31_SUFFIX.nii.gz ... etc
      (default: all three of tissue, tissueWMZ, and regional)

  Imagelist   A text file with one input image and its GA per row, i.e.
                  PATH/image01.nii.gz 32
                  PATH/image02.nii.gz 29 ... etc
              Inputs need to be masked, registered and intensity corrected.
  OutputDir   Output directory for all working files and output segmentations
  MaxThreads  Maximum number of CPUs for concurrent registrations and
              multi-threaded STAPLE (usually 8-12)
"""


def existing_file(value: str) -> Path:
    path = Path(value)
    if not path.is_file():
        raise argparse.ArgumentTypeError(f'"-a" requires a text list of atlases ({value} not found)')
    return path


def output_prefix(value: str) -> str:
    if not value:
        raise argparse.ArgumentTypeError('"-p" requires a prefix be specified')
    if '/' in value or '\\' in value:
        raise argparse.ArgumentTypeError(f"don't put a slash character in the output prefix: {value!r}")
    return value


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        number = 0
    if number < 1 or not value.strip().isdigit():
        raise argparse.ArgumentTypeError(f"MaxThreads must be a natural number, got {value!r}")
    return number


def parse_label_list(value: str) -> List[str]:
    """Split a space- or comma-separated list of label suffixes."""
    return [s for s in value.replace(',', ' ').split() if s]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='mas-pipeline',
        description='Fetal MRI multi-atlas segmentation: ANTS registration of GA-matched atlases, '
                    'STAPLE label fusion, partial volume correction and cortical plate parcellation.',
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('-a', dest='atlas_list', type=existing_file, default=None,
                        help='Atlas text list (default: paths.atlas_manifest)')
    parser.add_argument('-l', dest='labels', type=str, default=None,
                        help='Atlas label suffix(es), space or comma separated')
    parser.add_argument('-p', dest='prefix', type=output_prefix, default=None,
                        help='Output segmentation prefix (default: MAS)')
    parser.add_argument('-c', '--config', type=Path, default=None,
                        help='Study configuration YAML merged over the defaults')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Log collaborator commands and their output')
    parser.add_argument('--strict', action='store_true',
                        help='Report external jobs that exit with an error')
    parser.add_argument('subject_manifest', type=Path, help='Imagelist text file')
    parser.add_argument('output_dir', type=Path, help='Output directory')
    parser.add_argument('max_threads', type=positive_int, help='Maximum concurrent jobs / threads')
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def build_config(args: argparse.Namespace) -> PipelineConfig:
    """Load the YAML configuration and apply command line overrides."""
    config = PipelineConfig.from_dict(load_config(args.config))
    labels = parse_label_list(args.labels) if args.labels else None
    return config.with_overrides(
        atlas_manifest=args.atlas_list,
        label_suffixes=tuple(labels) if labels else None,
        output_prefix=args.prefix,
        max_threads=args.max_threads,
        strict=True if args.strict else None,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    log_file = setup_logging(args.output_dir, verbose=args.verbose)

    try:
        config = build_config(args)

        logger.info("=" * 70)
        logger.info("Fetal multi-atlas segmentation")
        logger.info("=" * 70)
        logger.info(f"Inputs: {args.subject_manifest}")
        logger.info(f"Atlas list: {config.atlas_manifest}")
        logger.info(f"Label schemes: {', '.join(config.label_suffixes)}")
        logger.info(f"Output prefix: {config.output_prefix}")
        logger.info(f"Output: {args.output_dir}")
        logger.info(f"Threads: {config.max_threads}")
        logger.info(f"Log file: {log_file}")

        invocation = ['mas-pipeline'] + list(sys.argv[1:] if argv is None else argv)
        pipeline = MASPipeline(config, args.subject_manifest, args.output_dir, invocation=invocation)
        pipeline.check_dependencies()
        pipeline.run()
    except PipelineError as e:
        logger.error(f"error: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
