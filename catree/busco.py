#!/usr/bin/env python3
"""
BUSCO step of the core-gene pipeline.

Runs BUSCO on every genome, summarises completeness/contamination, filters
genomes by quality and collects the BUSCO genes that are Complete in every
accepted genome into one FASTA file per gene.
"""

import os
import sys
import shutil
import logging
import argparse
from collections import Counter
from datetime import datetime
from pathlib import Path

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from Bio import SeqIO
from Bio.SeqRecord import SeqRecord

from catree import config
from catree.common import (
    PipelineError, find_fasta_files, run_command, run_parallel, sample_id
)

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = [
    "ID", "Complete_Single", "Complete_Duplicated", "Fragmented", "Missing",
    "Completeness(%)", "Contamination(%)",
]

SUMMARY_PATTERNS = {
    "Complete_Single": "Complete and single-copy BUSCOs",
    "Complete_Duplicated": "Complete and duplicated BUSCOs",
    "Fragmented": "Fragmented BUSCOs",
    "Missing": "Missing BUSCOs",
}

# ============================================================================
# RUN BUSCO
# ============================================================================

def run_busco(reference, fasta, out_dir='out_busco', threads=4, prefix=(), log_file=None):
    """Run BUSCO in genome mode on a single assembly."""
    if not prefix and shutil.which('busco') is None:
        raise PipelineError("Command busco not found!")

    genome_id = sample_id(fasta)
    result_dir = Path(out_dir) / genome_id
    if result_dir.is_dir():
        raise PipelineError(f"BUSCO result directory already exists: {result_dir}")

    Path(out_dir).mkdir(parents=True, exist_ok=True)

    cmd = [
        *prefix, 'busco',
        '-m', 'genome',
        '-i', fasta,
        '--offline',
        '--out_path', out_dir,
        '-o', genome_id,
        '-l', reference,
        '-c', threads,
    ]

    if log_file:
        with open(log_file, 'a') as log:
            run_command(cmd, stdout=log)
    else:
        run_command(cmd)

    return result_dir


def run_busco_parallel(reference, in_dir, suffix='fna', out_dir='out_busco', threads=4,
                       prefix=(), jobs=config.BUSCO_JOBS):
    """Run BUSCO on every *.<suffix> file below in_dir, `jobs` genomes at a time."""
    fasta_files = find_fasta_files(in_dir, suffix)
    if not fasta_files:
        raise PipelineError(f"No input files found in {in_dir} with suffix {suffix}")

    out_dir = Path(out_dir)
    if out_dir.is_dir():
        raise PipelineError(
            f"Output directory {out_dir} already exists. Please specify a new directory.")
    out_dir.mkdir(parents=True)

    job_threads = threads // jobs
    if job_threads < 1:
        logger.warning("Threads per job too low, setting to 1.")
        job_threads = 1

    log_file = out_dir / f"busco_{datetime.now().strftime('%Y%m%dT%H%M')}.log"

    logger.info(f"Running BUSCO on {len(fasta_files)} genomes ({jobs} jobs x {job_threads} threads)")
    args_list = [(reference, str(f), str(out_dir), job_threads, list(prefix), str(log_file))
                 for f in fasta_files]
    try:
        result_dirs = run_parallel(run_busco, args_list, jobs)
    except PipelineError as e:
        raise PipelineError(f"Some BUSCO jobs failed. Check {log_file} for details. ({e})")

    logger.info(f"BUSCO analysis completed. Results saved in {out_dir}.")
    logger.info(f"Logs available in {log_file}.")
    return result_dirs

# ============================================================================
# SUMMARISE
# ============================================================================

def parse_busco_summary(busco_dir):
    """Parse the short summary of one BUSCO result directory.

    Returns a dict keyed by SUMMARY_COLUMNS, or None if no summary exists.
    """
    busco_dir = Path(busco_dir)
    summaries = sorted(busco_dir.rglob("short_summary*.txt"))
    if not summaries:
        logger.warning(f"No short_summary.txt found in {busco_dir}")
        return None

    counts = {key: 0 for key in SUMMARY_PATTERNS}
    with open(summaries[0], 'r') as f:
        for line in f:
            for key, pattern in SUMMARY_PATTERNS.items():
                if pattern in line:
                    counts[key] = int(line.split()[0])

    total = sum(counts.values())
    if total > 0:
        completeness = counts["Complete_Single"] / total * 100
        contamination = counts["Complete_Duplicated"] / total * 100
    else:
        completeness = 0.0
        contamination = 0.0

    row = {"ID": busco_dir.name}
    row.update(counts)
    row["Completeness(%)"] = round(completeness, 2)
    row["Contamination(%)"] = round(contamination, 2)
    return row


def summarize_busco(busco_dir, output_file=None):
    """Summarise every BUSCO result directory below busco_dir into one table."""
    busco_dir = Path(busco_dir)
    if not busco_dir.is_dir():
        raise PipelineError(f"Directory {busco_dir} does not exist")
    if output_file and os.path.exists(output_file):
        raise PipelineError(f"Output file {output_file} already exists")

    rows = []
    for sub_dir in sorted(d for d in busco_dir.iterdir() if d.is_dir()):
        row = parse_busco_summary(sub_dir)
        if row:
            rows.append(row)

    df = pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
    df.to_csv(output_file or sys.stdout, sep='\t', index=False, float_format='%.2f')
    return df


def load_summary(summary):
    if isinstance(summary, pd.DataFrame):
        return summary
    return pd.read_csv(summary, sep='\t', dtype={"ID": str})

# ============================================================================
# CORE GENES
# ============================================================================

def select_genomes(summary, completeness=config.COMPLETENESS, contamination=config.CONTAMINATION):
    """Split genomes into accepted and rejected lists by quality thresholds."""
    df = load_summary(summary)
    passed = (df["Completeness(%)"] > completeness) & (df["Contamination(%)"] < contamination)
    return df.loc[passed, "ID"].tolist(), df.loc[~passed, "ID"].tolist()


def complete_buscos(busco_dir, genome):
    """BUSCO IDs with status Complete in a genome's full_table.tsv."""
    genome_dir = Path(busco_dir) / genome
    run_dirs = sorted(d for d in genome_dir.rglob("run_*") if d.is_dir()) if genome_dir.is_dir() else []
    if not run_dirs:
        logger.warning(f"Missing BUSCO run directory for {genome}.")
        return None

    tables = sorted(run_dirs[0].rglob("full_table.tsv"))
    if not tables:
        logger.warning(f"Missing full_table.tsv in {run_dirs[0]}.")
        return None

    complete = set()
    with open(tables[0], 'r') as f:
        for line in f:
            if line.startswith('#'):
                continue
            parts = line.rstrip('\n').split('\t')
            if len(parts) >= 2 and parts[1] == 'Complete':
                complete.add(parts[0])
    return complete


def count_complete_buscos(busco_dir, genomes):
    counter = Counter()
    for genome in genomes:
        complete = complete_buscos(busco_dir, genome)
        if complete:
            counter.update(complete)
    return counter


def common_complete_buscos(busco_dir, genomes):
    """BUSCO IDs that are Complete in every genome."""
    counter = count_complete_buscos(busco_dir, genomes)
    return sorted(busco_id for busco_id, count in counter.items() if count == len(genomes))


def busco_prevalence(busco_dir, genomes):
    """Fraction of genomes in which each BUSCO is Complete."""
    counter = count_complete_buscos(busco_dir, genomes)
    n_genomes = len(genomes)
    df = pd.DataFrame(
        [{'busco_id': b, 'count': c, 'prevalence': c / n_genomes if n_genomes else 0.0}
         for b, c in counter.items()],
        columns=['busco_id', 'count', 'prevalence'],
    )
    return df.sort_values(['prevalence', 'busco_id'], ascending=[False, True]).reset_index(drop=True)


def plot_threshold_curve(prevalence, output_file):
    """Plot the number of core BUSCOs against the prevalence threshold."""
    thresholds = np.round(np.arange(0.0, 1.01, 0.01), 2)
    gene_counts = [int((prevalence['prevalence'] >= t).sum()) for t in thresholds]

    fig, ax = plt.subplots(figsize=(7, 5))
    ax.plot(thresholds * 100, gene_counts, 'b-', linewidth=2)
    ax.axhline(y=gene_counts[-1], color='r', linestyle='--', alpha=0.5,
               label=f'{gene_counts[-1]} genes at 100%')
    ax.set_xlabel('Prevalence Threshold (%)', fontsize=12)
    ax.set_ylabel('Number of Complete BUSCOs', fontsize=12)
    ax.set_title('Core Gene Count vs Prevalence Threshold', fontsize=14, fontweight='bold')
    ax.grid(True, alpha=0.3)
    ax.legend()
    plt.tight_layout()
    plt.savefig(output_file, dpi=150, bbox_inches='tight')
    plt.close(fig)

    return pd.DataFrame({'threshold_pct': thresholds * 100, 'gene_count': gene_counts})


def single_copy_sequence_dir(busco_dir, genome):
    genome_dir = Path(busco_dir) / genome
    if not genome_dir.is_dir():
        return None
    for d in sorted(genome_dir.rglob("single_copy_busco_sequences")):
        if d.is_dir() and d.parent.name == "busco_sequences":
            return d
    return None


def append_renamed(source, target, genome):
    """Append the records of source to target with headers set to the genome ID."""
    records = [SeqRecord(r.seq, id=genome, description='') for r in SeqIO.parse(source, "fasta")]
    with open(target, 'a') as out:
        SeqIO.write(records, out, "fasta")


def core_extraction(summary_file, busco_dir, completeness=config.COMPLETENESS,
                    contamination=config.CONTAMINATION, out_dir='out_core'):
    """Write the sequences of BUSCOs Complete in all accepted genomes, one file per BUSCO."""
    if not os.path.isfile(summary_file):
        raise PipelineError(f"Summary file {summary_file} does not exist.")
    if not os.path.isdir(busco_dir):
        raise PipelineError(f"Directory {busco_dir} does not exist.")
    out_dir = Path(out_dir)
    if out_dir.is_dir():
        raise PipelineError(f"Directory {out_dir} already exists. Remove it to rerun.")

    out_dir.mkdir(parents=True)

    accepted, rejected = select_genomes(summary_file, completeness, contamination)
    if not accepted:
        raise PipelineError(
            f"No genomes meet the criteria (Completeness >{completeness}%, "
            f"Contamination <{contamination}%).")
    logger.info(f"Accepted {len(accepted)} genomes and removed {len(rejected)} genomes.")
    for genome in rejected:
        logger.info(f"Reject genome: {genome}")

    core_ids = common_complete_buscos(busco_dir, accepted)
    if not core_ids:
        raise PipelineError("No common Complete BUSCOs found across all genomes.")
    logger.info(f"{len(core_ids)} common Complete BUSCOs found across all genomes.")

    seq_dirs = {}
    for genome in accepted:
        seq_dir = single_copy_sequence_dir(busco_dir, genome)
        if seq_dir is None:
            logger.warning(f"Missing sequence directory for {genome}.")
        else:
            seq_dirs[genome] = seq_dir

    for busco_id in core_ids:
        for genome, seq_dir in seq_dirs.items():
            for ext in ('fna', 'faa'):
                source = seq_dir / f"{busco_id}.{ext}"
                if source.is_file():
                    append_renamed(source, out_dir / f"{busco_id}.{ext}", genome)

    logger.info(f"Complete BUSCO sequences have been extracted to {out_dir}.")
    return core_ids


def main():
    parser = argparse.ArgumentParser(
        description="Summarise BUSCO results and extract core genes shared by all genomes")
    parser.add_argument("busco_dir", help="Directory containing one BUSCO result per genome")
    parser.add_argument("--summary", default="busco_summary.tsv",
                        help="BUSCO summary table (created if missing)")
    parser.add_argument("--output-dir", default="out_core",
                        help="Output directory for core gene sequences")
    parser.add_argument("-m", "--completeness", type=float, default=config.COMPLETENESS,
                        help=f"Genome completeness threshold (default: {config.COMPLETENESS})")
    parser.add_argument("-n", "--contamination", type=float, default=config.CONTAMINATION,
                        help=f"Genomic contamination threshold (default: {config.CONTAMINATION})")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format=config.LOG_FORMAT)
    try:
        if not os.path.exists(args.summary):
            summarize_busco(args.busco_dir, args.summary)
        core_extraction(args.summary, args.busco_dir, args.completeness,
                        args.contamination, args.output_dir)
    except PipelineError as e:
        logger.error(e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
