#!/usr/bin/env python3
"""
Tree building: FASTA header conversion from an ID lookup table and FastTree.
"""

import os
import sys
import shlex
import logging
import argparse
from datetime import datetime
from pathlib import Path

from catree import config
from catree.common import PipelineError, file_prefix, run_command

logger = logging.getLogger(__name__)


def load_id_lookup(lookup_table):
    """Read a two-column tab separated table: old_id -> new_id."""
    lookup = {}
    with open(lookup_table, 'r') as f:
        for line in f:
            parts = line.rstrip('\n').split('\t')
            if len(parts) >= 2 and parts[0]:
                lookup[parts[0]] = parts[1]
    return lookup


def convert_fasta_headers(input_fasta, lookup_table, output_fasta):
    """Rename FASTA headers found in the lookup table; other lines pass through.

    The output is written to a temporary file first, so input and output may
    be the same file.
    """
    if not os.path.isfile(input_fasta):
        raise PipelineError(f"Input fasta file not found: {input_fasta}")
    if not lookup_table or not os.path.isfile(lookup_table):
        raise PipelineError(f"Lookup table file not found: {lookup_table}")

    lookup = load_id_lookup(lookup_table)
    temp_file = f"{output_fasta}.tmp"

    converted = 0
    try:
        with open(input_fasta, 'r') as fin, open(temp_file, 'w') as fout:
            for line in fin:
                if line.startswith('>'):
                    header = line[1:].rstrip('\n')
                    if header in lookup:
                        header = lookup[header]
                        converted += 1
                    fout.write(f">{header}\n")
                else:
                    fout.write(line)
        os.replace(temp_file, output_fasta)
    except OSError as e:
        if os.path.exists(temp_file):
            os.remove(temp_file)
        raise PipelineError(f"Failed to process fasta headers: {e}")

    logger.info(f"Header conversion completed successfully: {output_fasta} ({converted} headers converted)")
    return output_fasta


def run_fasttree(alignment, fasttree_opts=config.FASTTREE_OPTS["nuc"]):
    """Infer a tree with FastTree; the Newick file is written next to the alignment."""
    alignment = Path(alignment)
    out_dir = alignment.parent
    out_tree = out_dir / f"{file_prefix(alignment)}.nwk"

    if not alignment.is_file():
        raise PipelineError(f"Input alignment {alignment} does not exist")
    if out_tree.is_file():
        raise PipelineError(f"Output tree {out_tree} already exists")

    log_file = out_dir / f"{datetime.now().strftime('%Y%m%dT%H%M')}_fasttree.log"
    cmd = ['FastTree', *shlex.split(fasttree_opts), '-quiet', '-log', log_file, alignment]
    try:
        with open(out_tree, 'w') as outf:
            run_command(cmd, stdout=outf)
    except PipelineError as e:
        out_tree.unlink()
        raise PipelineError(f"FastTree execution failed for {alignment}: {e}")

    logger.info(f"Tree written to {out_tree} (log: {log_file})")
    return out_tree


def main():
    parser = argparse.ArgumentParser(description="Rename alignment headers and build a FastTree tree")
    parser.add_argument("alignment", help="Alignment FASTA")
    parser.add_argument("-c", "--config", help="ID lookup table (old_id<TAB>new_id)")
    parser.add_argument("--fasttree-opts", default=config.FASTTREE_OPTS["nuc"], help="Options for FastTree")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format=config.LOG_FORMAT)
    try:
        if args.config:
            convert_fasta_headers(args.alignment, args.config, args.alignment)
        run_fasttree(args.alignment, args.fasttree_opts)
    except PipelineError as e:
        logger.error(e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
