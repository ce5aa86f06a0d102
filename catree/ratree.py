#!/usr/bin/env python3
"""
16S rRNA phylogeny pipeline.

Steps:
  1. Predict rRNA genes (barrnap), extract and filter 16S copies, cluster (vsearch)
  2. Merge the per-genome 16S sequences
  3. Align (MAFFT) and trim (TrimAl)
  4. Rename alignment headers from an ID lookup table
  5. Build the tree with FastTree
"""

import sys
import shutil
import logging
import argparse
from datetime import datetime
from pathlib import Path

from catree import config
from catree.alignment import core_align
from catree.common import PipelineError, check_dependencies, log_arguments, setup_logging
from catree.rrna import KINGDOMS, extract_unique16s, merge_fasta
from catree.tree import convert_fasta_headers, run_fasttree

logger = logging.getLogger(__name__)

CMDNAME = "ratree"
DEPENDENCIES = ['barrnap', 'vsearch', 'mafft', 'trimal', 'FastTree']


class RrnaTreePipeline:
    def __init__(self, input_dir, output_dir,
                 suffix=config.SUFFIX_FASTA,
                 output_prefix=config.OUTPUT_PREFIX_16S,
                 mode=config.KINGDOM,
                 identity=config.IDENTITY,
                 threads=config.THREADS,
                 lookup_table=None,
                 mafft_opts=config.MAFFT_OPTS,
                 trimal_opts=config.TRIMAL_OPTS,
                 fasttree_opts=config.FASTTREE_OPTS_16S):

        self.input_dir = Path(input_dir)
        self.output_dir = Path(output_dir)
        self.suffix = suffix
        self.output_prefix = output_prefix
        self.mode = mode
        self.identity = identity
        self.threads = threads
        self.lookup_table = lookup_table
        self.mafft_opts = mafft_opts
        self.trimal_opts = trimal_opts
        self.fasttree_opts = fasttree_opts

        self.rrna_dir = self.output_dir / "rrna"
        self.merged = self.output_dir / "merged_16s.fa"
        self.alignment = self.output_dir / f"{output_prefix}.aln"

    def arguments(self):
        return [
            ("Suffix of input", self.suffix),
            ("Input directory", self.input_dir),
            ("Output directory", self.output_dir),
            ("Prefix of output", self.output_prefix),
            ("Kingdom", self.mode),
            ("Identity of clustering", self.identity),
            ("Options for mafft", self.mafft_opts),
            ("Options for TrimAL", self.trimal_opts),
            ("Options for FastTree", self.fasttree_opts),
            ("Num of threads", self.threads),
            ("Config file", self.lookup_table),
        ]

    def validate(self):
        if not self.input_dir.is_dir():
            raise PipelineError(f"Input directory not found: {self.input_dir}")
        if self.output_dir.is_dir():
            raise PipelineError(f"Output directory already exists: {self.output_dir}")

    def convert_headers(self, trimmed):
        """Write the final alignment, renamed when a lookup table is available."""
        if self.lookup_table:
            try:
                return convert_fasta_headers(trimmed, self.lookup_table, self.alignment)
            except PipelineError as e:
                logger.error(f"Conversion process failed. {e}")
        else:
            logger.info("No ID lookup table given, headers are kept")
        shutil.copyfile(trimmed, self.alignment)
        return self.alignment

    def run(self):
        logger.info("Starting 16S rRNA extraction...")
        results = extract_unique16s(self.input_dir, self.rrna_dir, self.suffix, self.mode,
                                    self.identity, self.threads)
        if not any(results.values()):
            raise PipelineError("Failed to extract 16S rRNA sequences.")

        logger.info("Performing merged fasta ...")
        merge_fasta(self.rrna_dir, self.merged)

        logger.info("Alignment & trimming ...")
        trimmed = core_align(str(self.merged), self.output_dir, self.mafft_opts, self.trimal_opts)
        if not Path(trimmed).is_file():
            raise PipelineError("Cannot find fasta after alignment and trimming")

        logger.info("Convert headers of alignment fasta...")
        self.convert_headers(trimmed)

        logger.info("Building phylogenetic tree of 16s rRNA ...")
        tree = run_fasttree(self.alignment, self.fasttree_opts)

        logger.info("16S rRNA analysis completed successfully.")
        return tree


def build_parser():
    parser = argparse.ArgumentParser(
        prog=CMDNAME,
        description="Build a 16S rRNA phylogenetic tree from genome assemblies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('input_directory', nargs='?', help='Directory containing genome FASTA files')
    parser.add_argument('output_directory', nargs='?', help='Output directory (must not exist)')
    parser.add_argument('-s', '--suffix', default=config.SUFFIX_FASTA,
                        help=f'Suffix of input files (default: {config.SUFFIX_FASTA})')
    parser.add_argument('-o', '--output_prefix', default=config.OUTPUT_PREFIX_16S,
                        help=f'Output file prefix (default: {config.OUTPUT_PREFIX_16S})')
    parser.add_argument('-i', '--identity', type=float, default=config.IDENTITY,
                        help=f'Clustering identity of 16S copies (default: {config.IDENTITY})')
    parser.add_argument('-k', '--kingdom', choices=KINGDOMS, default=config.KINGDOM,
                        help=f'barrnap kingdom (default: {config.KINGDOM})')
    parser.add_argument('-t', '--threads', type=int, default=config.THREADS,
                        help=f'Number of threads (default: {config.THREADS})')
    parser.add_argument('-c', '--config', help='ID lookup table, old_id<TAB>new_id')
    parser.add_argument('--mafft-opts', default=config.MAFFT_OPTS,
                        help=f'Options for mafft (default: {config.MAFFT_OPTS})')
    parser.add_argument('--trimal-opts', default=config.TRIMAL_OPTS,
                        help=f'Options for trimal (default: {config.TRIMAL_OPTS})')
    parser.add_argument('--fasttree-opts', default=config.FASTTREE_OPTS_16S,
                        help=f'Options for FastTree (default: {config.FASTTREE_OPTS_16S})')
    parser.add_argument('-v', '--version', action='version', version=config.VERSION)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.input_directory and not args.output_directory:
        parser.print_help()
        return 1
    if not args.input_directory or not args.output_directory:
        setup_logging()
        logger.error("Input and output directories are required.")
        return 1

    pipeline = RrnaTreePipeline(
        args.input_directory, args.output_directory,
        suffix=args.suffix,
        output_prefix=args.output_prefix,
        mode=args.kingdom,
        identity=args.identity,
        threads=args.threads,
        lookup_table=args.config,
        mafft_opts=args.mafft_opts,
        trimal_opts=args.trimal_opts,
        fasttree_opts=args.fasttree_opts,
    )

    try:
        pipeline.validate()
        check_dependencies(DEPENDENCIES)
    except PipelineError as e:
        setup_logging()
        logger.error(e)
        return 1

    pipeline.output_dir.mkdir(parents=True)
    log_file = pipeline.output_dir / f"{CMDNAME}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    setup_logging(log_file)

    logger.info(f"{CMDNAME} version {config.VERSION}")
    logger.info(f"[CMD] {CMDNAME} {' '.join(argv if argv is not None else sys.argv[1:])}")
    log_arguments(pipeline.arguments())

    try:
        pipeline.run()
    except PipelineError as e:
        logger.error(e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
