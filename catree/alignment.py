#!/usr/bin/env python3
"""
Core gene alignment: MAFFT alignment, TrimAl trimming and concatenation of
the trimmed alignments into a single supermatrix.
"""

import os
import sys
import shlex
import logging
import argparse
from pathlib import Path

import pandas as pd
from Bio import AlignIO, SeqIO

from catree import config
from catree.common import PipelineError, find_fasta_files, run_command, run_parallel, sample_id

logger = logging.getLogger(__name__)

TRIM_SUFFIX = "_trim.aln"


def core_align(fasta, out_dir, mafft_opts=config.MAFFT_OPTS, trimal_opts=config.TRIMAL_OPTS):
    """Align one gene with MAFFT and trim the alignment with TrimAl."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    gene_id = sample_id(fasta)
    align_file = out_dir / f"{gene_id}.aln"
    trim_file = out_dir / f"{gene_id}{TRIM_SUFFIX}"

    # Run MAFFT
    with open(align_file, 'w') as outf:
        run_command(['mafft', *shlex.split(mafft_opts), '--quiet', fasta], stdout=outf)

    # Run TrimAl
    with open(trim_file, 'w') as outf:
        run_command(['trimal', '-in', align_file, *shlex.split(trimal_opts)], stdout=outf)

    logger.info(f"Processed: {fasta} -> {trim_file}")
    return trim_file


def core_align_parallel(in_dir, out_dir='out_core_align', threads=config.THREADS, seq_type=config.TYPE,
                        mafft_opts=config.MAFFT_OPTS, trimal_opts=config.TRIMAL_OPTS):
    """Align and trim every gene FASTA of the requested type, `threads` genes at a time."""
    if not in_dir:
        raise PipelineError("Input directory not specified.")
    if seq_type not in config.SEQ_EXTENSIONS:
        raise PipelineError(f"Invalid sequence type: {seq_type}. Use 'nuc' or 'aa'.")

    ext = config.SEQ_EXTENSIONS[seq_type]
    fasta_files = find_fasta_files(in_dir, ext)
    if not fasta_files:
        raise PipelineError(f"No {seq_type} FASTA files (.{ext}) found in {in_dir}")

    Path(out_dir).mkdir(parents=True, exist_ok=True)

    args_list = [(str(f), str(out_dir), mafft_opts, trimal_opts) for f in fasta_files]
    try:
        trimmed = run_parallel(core_align, args_list, threads)
    except PipelineError as e:
        raise PipelineError(f"Parallel processing failed. {e}")

    logger.info(f"All tasks completed successfully. Results are in {out_dir}")
    return trimmed


def read_alignment(path):
    """Sequences of an alignment keyed by the header's first word, in file order."""
    sequences = {}
    for record in SeqIO.parse(path, "fasta"):
        sequences.setdefault(record.id, "")
        sequences[record.id] += str(record.seq)
    return sequences


def core_concatenate(in_dir, out_fasta='result_cores.aln', partition_file=None, seq_type=config.TYPE):
    """Concatenate all trimmed gene alignments into one supermatrix.

    Taxa missing from a gene alignment are filled with gaps for that gene.
    When partition_file is given, the gene boundaries are written to it.
    """
    in_dir = Path(in_dir)
    if not in_dir.is_dir():
        raise PipelineError(f"Input directory {in_dir} does not exist")

    trim_files = sorted(in_dir.glob(f"*{TRIM_SUFFIX}"))
    if not trim_files:
        raise PipelineError(f"No {TRIM_SUFFIX} files found in {in_dir}")

    concatenated = {}
    partitions = []
    total_length = 0

    for trim_file in trim_files:
        logger.info(f"Processing {trim_file}...")
        sequences = read_alignment(trim_file)
        if not sequences:
            logger.warning(f"No sequences in {trim_file}, skipped")
            continue

        lengths = {len(s) for s in sequences.values()}
        if len(lengths) > 1:
            raise PipelineError(f"Sequences of unequal length in alignment {trim_file}")
        gene_length = lengths.pop()
        if gene_length == 0:
            logger.warning(f"No alignment columns left in {trim_file}, skipped")
            continue

        # Taxa first seen in this gene are gap-filled for the preceding genes
        for taxon in sequences:
            if taxon not in concatenated:
                concatenated[taxon] = '-' * total_length
        for taxon in concatenated:
            concatenated[taxon] += sequences.get(taxon, '-' * gene_length)

        gene = trim_file.name[:-len(TRIM_SUFFIX)]
        partitions.append((gene, total_length + 1, total_length + gene_length))
        total_length += gene_length

    logger.info(f"Writing concatenated sequences to {out_fasta}...")
    with open(out_fasta, 'w') as out:
        for taxon, seq in concatenated.items():
            out.write(f">{taxon}\n{seq}\n")

    if partition_file:
        model = "DNA" if seq_type == "nuc" else "WAG"
        with open(partition_file, 'w') as out:
            for gene, start, end in partitions:
                out.write(f"{model}, {gene} = {start}-{end}\n")

    logger.info(f"Concatenation of all core-genes alignments completed: {out_fasta} "
                f"({len(concatenated)} taxa, {len(partitions)} genes, {total_length} columns)")
    return out_fasta


def summarize_alignments(align_dir, output_file=None):
    """Per-gene statistics of the trimmed alignments."""
    stats = []
    for trim_file in sorted(Path(align_dir).glob(f"*{TRIM_SUFFIX}")):
        gene = trim_file.name[:-len(TRIM_SUFFIX)]
        try:
            alignment = AlignIO.read(trim_file, "fasta")
        except ValueError as e:
            logger.warning(f"Could not read alignment {trim_file}: {e}")
            continue

        n_sequences = len(alignment)
        alignment_length = alignment.get_alignment_length()
        cells = n_sequences * alignment_length
        gaps = sum(str(record.seq).count('-') for record in alignment)
        stats.append({
            'gene': gene,
            'n_sequences': n_sequences,
            'alignment_length': alignment_length,
            'gap_fraction': round(gaps / cells, 4) if cells else 0.0,
        })

    df = pd.DataFrame(stats, columns=['gene', 'n_sequences', 'alignment_length', 'gap_fraction'])
    if output_file:
        df.to_csv(output_file, index=False)
    return df


def main():
    parser = argparse.ArgumentParser(description="Align, trim and concatenate core gene sequences")
    parser.add_argument("-i", "--input", required=True, help="Directory of per-gene FASTA files")
    parser.add_argument("-o", "--output", default="out_core_align", help="Output directory")
    parser.add_argument("-t", "--threads", type=int, default=config.THREADS, help="Number of parallel jobs")
    parser.add_argument("--type", choices=sorted(config.SEQ_EXTENSIONS), default=config.TYPE,
                        help="Sequence type (default: nuc)")
    parser.add_argument("--mafft-opts", default=config.MAFFT_OPTS, help="Options for mafft")
    parser.add_argument("--trimal-opts", default=config.TRIMAL_OPTS, help="Options for trimal")
    parser.add_argument("--concatenate", metavar="FASTA",
                        help="Also concatenate the trimmed alignments into this file")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format=config.LOG_FORMAT)
    try:
        core_align_parallel(args.input, args.output, args.threads, args.type,
                            args.mafft_opts, args.trimal_opts)
        if args.concatenate:
            partition_file = os.path.splitext(args.concatenate)[0] + ".partitions"
            core_concatenate(args.output, args.concatenate, partition_file, args.type)
    except PipelineError as e:
        logger.error(e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
