#!/usr/bin/env python3
"""
16S rRNA extraction from genome assemblies.

barrnap predicts rRNA genes, the 16S hits are cut out of the assembly by
their GFF coordinates, multi-copy predictions are filtered and the
remaining copies are clustered with vsearch.
"""

import os
import re
import sys
import shutil
import logging
import argparse
import tempfile
from pathlib import Path
from typing import List, NamedTuple

from Bio import SeqIO
from Bio.SeqRecord import SeqRecord

from catree import config
from catree.common import (
    PipelineError, file_prefix, find_fasta_files, run_command, run_parallel, sample_id
)

logger = logging.getLogger(__name__)

KINGDOMS = ('arc', 'bac')
UNIQUE_SUFFIX = "_filt_16s_ucopy.fa"


class RrnaHit(NamedTuple):
    contig: str
    start: int
    end: int
    strand: str
    partial: bool

    @property
    def name(self):
        suffix = "_partial" if self.partial else ""
        return f"{self.contig}_{self.start}_{self.end}_{self.strand}{suffix}"


def check_kingdom(mode):
    if mode not in KINGDOMS:
        raise PipelineError("Invalid mode. Use 'arc' or 'bac'.")

# ============================================================================
# BARRNAP
# ============================================================================

def predict_rrna(fasta, output=None, mode=config.KINGDOM):
    """Predict rRNA genes of one genome with barrnap."""
    if not os.path.isfile(fasta):
        raise PipelineError(f"Input file {fasta} not found.")
    if not output:
        output = f"{file_prefix(fasta)}_barrnap.gff"
    if os.path.isfile(output):
        raise PipelineError(f"Output file {output} already exists.")
    check_kingdom(mode)

    with open(output, 'w') as outf:
        run_command(['barrnap', '--kingdom', mode, fasta], stdout=outf)

    logger.info(f"Barrnap completed: {output}")
    return output


def predict_rrna_parallel(in_dir, suffix=config.SUFFIX_FASTA, mode=config.KINGDOM,
                          out_dir='./out_rrna', jobs=config.THREADS):
    """Run barrnap on every *.<suffix> genome below in_dir."""
    if not os.path.isdir(in_dir):
        raise PipelineError(f"Input directory {in_dir} not found.")
    Path(out_dir).mkdir(parents=True, exist_ok=True)

    genomes = find_fasta_files(in_dir, suffix)
    if not genomes:
        raise PipelineError(f"No files with suffix .{suffix} found in {in_dir}.")
    check_kingdom(mode)

    args_list = [(str(g), os.path.join(out_dir, f"{file_prefix(g)}_barrnap.gff"), mode)
                 for g in genomes]
    return run_parallel(predict_rrna, args_list, jobs)

# ============================================================================
# GFF EXTRACTION
# ============================================================================

def parse_rrna_gff(gff_file, search=config.SEARCH_16S) -> List[RrnaHit]:
    """rRNA features whose attributes match `search`."""
    pattern = re.compile(search)
    hits = []
    with open(gff_file, 'r') as f:
        for line in f:
            if line.startswith('#') or not line.strip():
                continue
            parts = line.rstrip('\n').split('\t')
            if len(parts) < 9 or 'rRNA' not in parts[2] or not pattern.search(parts[8]):
                continue

            contig, start, end, strand = parts[0], parts[3], parts[4], parts[6]
            if not (contig and start.isdigit() and end.isdigit() and strand in ('+', '-')):
                logger.error(f"Invalid GFF entry for CNTG={contig}, ST={start}, ED={end}, STRND={strand}")
                continue
            hits.append(RrnaHit(contig, int(start), int(end), strand, 'partial' in parts[8]))
    return hits


def extract_gff(gff_file, fasta, search=config.SEARCH_16S) -> List[SeqRecord]:
    """Cut the sequences of matching rRNA features out of the assembly.

    Coordinates are 1-based and inclusive; minus strand hits are
    reverse-complemented. Record IDs are <contig>_<start>_<end>_<strand>
    with a _partial suffix for partial predictions.
    """
    if not os.path.isfile(gff_file) or not os.path.isfile(fasta):
        raise PipelineError("Missing input files.")

    hits = parse_rrna_gff(gff_file, search)
    if not hits:
        return []

    wanted = {hit.contig for hit in hits}
    contigs = {r.id: r.seq for r in SeqIO.parse(fasta, "fasta") if r.id in wanted}

    records = []
    for hit in hits:
        seq = contigs.get(hit.contig, "")[hit.start - 1:hit.end]
        if len(seq) == 0:
            logger.error(f"Sequence not found for {hit.contig}:{hit.start}-{hit.end}")
            continue
        if hit.strand == '-':
            seq = seq.reverse_complement()
        records.append(SeqRecord(seq, id=hit.name, description=''))
    return records


def filter_16s(records):
    """Resolve multi-copy 16S predictions of one genome.

    All full length: every copy is kept. Full length and partial: only the
    full length copies are kept. All partial: only the longest is kept.
    """
    records = list(records)
    full = [r for r in records if '_partial' not in r.id]
    partial = [r for r in records if '_partial' in r.id]

    if len(full) == len(records):
        return records

    if full:
        for rejected in partial:
            logger.info(f"Reject: {rejected.id}")
        return full

    longest = partial[0]
    for record in partial[1:]:
        if len(record.seq) > len(longest.seq):
            longest = record
    for rejected in partial:
        if rejected is not longest:
            logger.info(f"Reject: {rejected.id}")
    return [longest]

# ============================================================================
# CLUSTERING
# ============================================================================

def unique_fa(fasta, out_dir='./out_16s', identity=config.IDENTITY):
    """Cluster 16S copies with vsearch and rename the centroids <prefix>_cp<n>.

    Returns the output path and the list of (prefix, new_id, old_id) renames.
    """
    if not fasta or not os.path.isfile(fasta):
        raise PipelineError(f"Input file '{fasta}' not found or not specified.")

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    prefix = file_prefix(fasta)
    output = out_dir / f"{prefix}_ucopy.fa"
    out_uc = out_dir / f"{prefix}_clusters.uc"
    vsearch_log = out_dir / "combined_vsearch.log"

    if not any(True for _ in SeqIO.parse(fasta, "fasta")):
        logger.warning(f"No sequences in {fasta}, clustering skipped")
        output.write_text("")
        return output, []

    with tempfile.TemporaryDirectory(dir=out_dir) as tmp_dir:
        centroids = os.path.join(tmp_dir, "centroids.fa")
        cmd = [
            'vsearch',
            '--cluster_fast', fasta,
            '--id', identity,
            '--centroids', centroids,
            '--uc', out_uc,
        ]
        with open(vsearch_log, 'a') as log:
            run_command(cmd, stdout=log, stderr=log)

        renamed = []
        records = []
        for n, record in enumerate(SeqIO.parse(centroids, "fasta"), 1):
            new_id = f"{prefix}_cp{n}"
            renamed.append((prefix, new_id, record.description))
            logger.info(f"{prefix}\t{new_id}\t{record.description}")
            records.append(SeqRecord(record.seq, id=new_id, description=''))

    SeqIO.write(records, output, "fasta")
    return output, renamed

# ============================================================================
# PER-GENOME WORKFLOW
# ============================================================================

def process_genome(genome, out_dir, suffix=config.SUFFIX_FASTA, identity=config.IDENTITY,
                   mode=config.KINGDOM):
    """Predict, extract, filter and cluster the 16S rRNA copies of one genome.

    Progress and errors go to <prefix>_processing.log in out_dir. Failures
    are logged and reported through the return value.
    """
    name = os.path.basename(genome)
    prefix = name[:-len(f".{suffix}")] if name.endswith(f".{suffix}") else file_prefix(genome)
    out_dir = Path(out_dir)
    out_gff = out_dir / f"{prefix}_barrnap.gff"
    out_16s = out_dir / f"{prefix}_filt_16s.fa"
    log_file = out_dir / f"{prefix}_processing.log"

    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(config.LOG_FORMAT))
    package_logger = logging.getLogger("catree")
    package_logger.addHandler(handler)
    try:
        logger.info(f"Processing genome: {genome}")
        predict_rrna(genome, str(out_gff), mode)
        records = filter_16s(extract_gff(str(out_gff), genome))
        SeqIO.write(records, out_16s, "fasta")
        logger.info(f"Filtering completed: {out_16s}")
        unique_fa(str(out_16s), out_dir, identity)
        logger.info(f"Unique 16S sequences saved for {genome}")
        return True
    except (PipelineError, OSError, ValueError) as e:
        logger.error(f"Processing failed for {genome}: {e}")
        return False
    finally:
        package_logger.removeHandler(handler)
        handler.close()


def extract_unique16s(in_dir, out_dir='./out_rrna', suffix=config.SUFFIX_FASTA, mode=config.KINGDOM,
                      identity=config.IDENTITY, jobs=config.THREADS):
    """Extract unique 16S rRNA sequences from every genome below in_dir."""
    if not in_dir or not os.path.isdir(in_dir):
        raise PipelineError(f"Either {in_dir} is missing, not a directory, or not defined!")

    Path(out_dir).mkdir(parents=True, exist_ok=True)

    genomes = find_fasta_files(in_dir, suffix)
    if not genomes:
        raise PipelineError(f"No files with suffix .{suffix} found in {in_dir}.")
    check_kingdom(mode)

    args_list = [(str(g), str(out_dir), suffix, identity, mode) for g in genomes]
    results = dict(zip((str(g) for g in genomes), run_parallel(process_genome, args_list, jobs)))

    failed = [g for g, ok in results.items() if not ok]
    if failed:
        logger.warning(f"16S extraction failed for {len(failed)} of {len(genomes)} genomes")
    logger.info(f"All processing completed. Check logs in {out_dir}")
    return results

# ============================================================================
# MERGE
# ============================================================================

def merge_fasta(in_dir, output, extension=UNIQUE_SUFFIX):
    """Merge the per-genome 16S files into one FASTA.

    Single-copy files contribute their sequence under the genome ID; files
    with several copies keep their original headers.
    """
    files = sorted(p for p in Path(in_dir).rglob(f"*{extension}") if p.is_file())

    merged = []
    for path in files:
        records = list(SeqIO.parse(path, "fasta"))
        if not records:
            logger.warning(f"File '{path}' contains no sequences. Skipped.")
            continue
        if len(records) == 1:
            genome = sample_id(path.name[:-len(extension)])
            merged.append(SeqRecord(records[0].seq, id=genome, description=''))
        else:
            logger.warning(f"File '{path}' contains {len(records)} sequences. "
                           f"Including original headers.")
            merged.extend(records)

    SeqIO.write(merged, output, "fasta")
    logger.info(f"Merged {len(merged)} sequences from {len(files)} files into {output}")
    return output


def main():
    parser = argparse.ArgumentParser(description="Extract unique 16S rRNA sequences from genome assemblies")
    parser.add_argument("input_dir", help="Directory containing genome FASTA files")
    parser.add_argument("output_dir", nargs='?', default="./out_rrna", help="Output directory")
    parser.add_argument("-s", "--suffix", default=config.SUFFIX_FASTA, help="Suffix of input files")
    parser.add_argument("-k", "--kingdom", choices=KINGDOMS, default=config.KINGDOM, help="barrnap kingdom")
    parser.add_argument("-i", "--identity", type=float, default=config.IDENTITY,
                        help="vsearch clustering identity")
    parser.add_argument("-t", "--threads", type=int, default=config.THREADS, help="Number of parallel jobs")
    parser.add_argument("--merge", metavar="FASTA", help="Merge the unique sequences into this file")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format=config.LOG_FORMAT)
    if shutil.which('barrnap') is None or shutil.which('vsearch') is None:
        logger.error("barrnap and vsearch must be available on PATH")
        return 1
    try:
        extract_unique16s(args.input_dir, args.output_dir, args.suffix, args.kingdom,
                          args.identity, args.threads)
        if args.merge:
            merge_fasta(args.output_dir, args.merge)
    except PipelineError as e:
        logger.error(e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
