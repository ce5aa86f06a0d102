#!/usr/bin/env python3
"""
Core-gene phylogeny pipeline.

Steps:
  1. Run BUSCO on every genome
  2. Summarise BUSCO completeness / contamination
  3. Extract BUSCOs Complete in all accepted genomes
  4. Align (MAFFT) and trim (TrimAl) every core gene
  5. Concatenate the trimmed alignments
  6. Rename alignment headers from an ID lookup table
  7. Build the tree with FastTree
"""

import sys
import shutil
import logging
import argparse
from datetime import datetime
from pathlib import Path

from catree import config
from catree.alignment import core_align_parallel, core_concatenate, summarize_alignments
from catree.busco import (
    busco_prevalence, core_extraction, plot_threshold_curve, run_busco_parallel,
    select_genomes, summarize_busco
)
from catree.common import (
    PipelineError, check_dependencies, conda_prefix, log_arguments, setup_logging
)
from catree.tree import convert_fasta_headers, run_fasttree

logger = logging.getLogger(__name__)

CMDNAME = "catree"
DEPENDENCIES = ['mafft', 'trimal', 'FastTree']


class CoreTreePipeline:
    def __init__(self, input_dir, output_dir,
                 reference=config.BUSCO_REF,
                 suffix=config.SUFFIX_FASTA,
                 completeness=config.COMPLETENESS,
                 contamination=config.CONTAMINATION,
                 output_prefix=config.OUTPUT_PREFIX,
                 threads=config.THREADS,
                 lookup_table=None,
                 seq_type=config.TYPE,
                 mafft_opts=config.MAFFT_OPTS,
                 trimal_opts=config.TRIMAL_OPTS,
                 fasttree_opts=None,
                 conda_name=config.CONDA_ENV_NAME,
                 conda_env_file=config.CONDA_ENV_FILE):

        self.input_dir = Path(input_dir)
        self.output_dir = Path(output_dir)
        self.reference = reference
        self.suffix = suffix
        self.completeness = completeness
        self.contamination = contamination
        self.output_prefix = output_prefix
        self.threads = threads
        self.lookup_table = lookup_table
        self.seq_type = seq_type
        self.mafft_opts = mafft_opts
        self.trimal_opts = trimal_opts
        self.fasttree_opts = fasttree_opts or config.FASTTREE_OPTS.get(seq_type, "-nt")
        self.conda_name = conda_name
        self.conda_env_file = conda_env_file

        self.busco_dir = self.output_dir / "busco"
        self.summary_file = self.output_dir / "busco_summary.tsv"
        self.core_dir = self.output_dir / "core_genes"
        self.align_dir = self.output_dir / "core_alignments"
        self.alignment = self.output_dir / f"{output_prefix}_core.aln"
        self.partitions = self.output_dir / f"{output_prefix}_core.partitions"

    def arguments(self):
        return [
            ("Conda env name", self.conda_name),
            ("Conda env file", self.conda_env_file),
            ("Reference", self.reference),
            ("Suffix of input", self.suffix),
            ("Thresh of completeness", self.completeness),
            ("Thresh of contamination", self.contamination),
            ("Input directory", self.input_dir),
            ("Output directory", self.output_dir),
            ("Prefix of output", self.output_prefix),
            ("Sequence type", self.seq_type),
            ("Options for mafft", self.mafft_opts),
            ("Options for TrimAL", self.trimal_opts),
            ("Options for FastTree", self.fasttree_opts),
            ("Num of threads", self.threads),
            ("Config file", self.lookup_table),
        ]

    def validate(self):
        """Check inputs before anything is written."""
        if not self.input_dir.is_dir():
            raise PipelineError(f"Input directory not found: {self.input_dir}")
        if self.output_dir.is_dir():
            raise PipelineError(f"Output directory already exists: {self.output_dir}")
        if self.seq_type not in config.SEQ_EXTENSIONS:
            raise PipelineError(f"Invalid sequence type: {self.seq_type}")

    def busco_prefix(self):
        """Run BUSCO directly when on PATH, otherwise through its conda environment."""
        if shutil.which('busco'):
            return []
        logger.info(f"Activating conda environment {self.conda_name}...")
        return conda_prefix(self.conda_name, self.conda_env_file)

    def write_prevalence(self):
        accepted, _ = select_genomes(self.summary_file, self.completeness, self.contamination)
        prevalence = busco_prevalence(self.busco_dir, accepted)
        prevalence.to_csv(self.output_dir / "busco_prevalence.csv", index=False)
        curve = plot_threshold_curve(prevalence, self.output_dir / "core_gene_threshold_curve.png")
        curve.to_csv(self.output_dir / "core_gene_threshold_summary.csv", index=False)

    def convert_headers(self):
        if not self.lookup_table:
            logger.info("No ID lookup table given, headers are kept")
            return
        try:
            convert_fasta_headers(self.alignment, self.lookup_table, self.alignment)
        except PipelineError as e:
            logger.error(f"Conversion process failed. {e}")

    def run(self, prefix=None):
        if prefix is None:
            prefix = self.busco_prefix()

        logger.info("Running BUSCO...")
        run_busco_parallel(self.reference, self.input_dir, self.suffix, self.busco_dir,
                           self.threads, prefix)

        logger.info("Summarizing BUSCO results...")
        summarize_busco(self.busco_dir, self.summary_file)

        logger.info("Extracting core genes...")
        core_extraction(self.summary_file, self.busco_dir, self.completeness,
                        self.contamination, self.core_dir)
        self.write_prevalence()

        logger.info("Aligning core genes...")
        core_align_parallel(self.core_dir, self.align_dir, self.threads, self.seq_type,
                            self.mafft_opts, self.trimal_opts)
        summarize_alignments(self.align_dir, self.output_dir / "alignment_summary.csv")

        logger.info("Concatenating alignments...")
        core_concatenate(self.align_dir, self.alignment, self.partitions, self.seq_type)

        logger.info("Convert headers of alignment fasta...")
        self.convert_headers()

        logger.info("Building phylogenetic tree...")
        tree = run_fasttree(self.alignment, self.fasttree_opts)

        logger.info("Pipeline completed successfully!")
        return tree


def build_parser():
    parser = argparse.ArgumentParser(
        prog=CMDNAME,
        description="Build a core-gene phylogenetic tree from genome assemblies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('input_directory', nargs='?', help='Directory containing genome FASTA files')
    parser.add_argument('output_directory', nargs='?', help='Output directory (must not exist)')
    parser.add_argument('-e', '--conda_env', default=config.CONDA_ENV_FILE,
                        help=f'Conda environment file (default: {config.CONDA_ENV_FILE})')
    parser.add_argument('-b', '--conda_name', default=config.CONDA_ENV_NAME,
                        help=f'Conda environment name (default: {config.CONDA_ENV_NAME})')
    parser.add_argument('-r', '--reference', default=config.BUSCO_REF,
                        help=f'BUSCO reference path (default: {config.BUSCO_REF})')
    parser.add_argument('-s', '--suffix', default=config.SUFFIX_FASTA,
                        help=f'Suffix of input files (default: {config.SUFFIX_FASTA})')
    parser.add_argument('-m', '--completeness', type=float, default=config.COMPLETENESS,
                        help=f'Genome completeness threshold (default: {config.COMPLETENESS})')
    parser.add_argument('-n', '--contamination', type=float, default=config.CONTAMINATION,
                        help=f'Genomic contamination threshold (default: {config.CONTAMINATION})')
    parser.add_argument('-o', '--output_prefix', default=config.OUTPUT_PREFIX,
                        help=f'Output file prefix (default: {config.OUTPUT_PREFIX})')
    parser.add_argument('-t', '--threads', type=int, default=config.THREADS,
                        help=f'Number of threads (default: {config.THREADS})')
    parser.add_argument('-c', '--config', help='ID lookup table, old_id<TAB>new_id')
    parser.add_argument('--type', choices=sorted(config.SEQ_EXTENSIONS), default=config.TYPE,
                        help='Build the tree from nucleotide (nuc) or amino acid (aa) sequences')
    parser.add_argument('--mafft-opts', default=config.MAFFT_OPTS,
                        help=f'Options for mafft (default: {config.MAFFT_OPTS})')
    parser.add_argument('--trimal-opts', default=config.TRIMAL_OPTS,
                        help=f'Options for trimal (default: {config.TRIMAL_OPTS})')
    parser.add_argument('--fasttree-opts',
                        help='Options for FastTree (default: -nt for nuc, -lg for aa)')
    parser.add_argument('-v', '--version', action='version', version=config.VERSION)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.input_directory or not args.output_directory:
        setup_logging()
        logger.error("Input and output directories are required.")
        return 1

    pipeline = CoreTreePipeline(
        args.input_directory, args.output_directory,
        reference=args.reference,
        suffix=args.suffix,
        completeness=args.completeness,
        contamination=args.contamination,
        output_prefix=args.output_prefix,
        threads=args.threads,
        lookup_table=args.config,
        seq_type=args.type,
        mafft_opts=args.mafft_opts,
        trimal_opts=args.trimal_opts,
        fasttree_opts=args.fasttree_opts,
        conda_name=args.conda_name,
        conda_env_file=args.conda_env,
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
