#!/usr/bin/env python3
"""
Download the example genome assemblies from NCBI.
"""

import sys
import gzip
import logging
import argparse
from pathlib import Path

import requests
from requests.adapters import HTTPAdapter, Retry
from tqdm import tqdm

from catree import config

logger = logging.getLogger(__name__)

NCBI_FTP = "https://ftp.ncbi.nlm.nih.gov/genomes/all"

EXAMPLE_GENOMES = {
    "GCA_000205025.1": "ASM20502v1",
    "GCA_000250875.1": "ASM25087v1",
    "GCA_001411495.1": "ASM141149v1",
    "GCA_003315195.1": "ASM331519v1",
    "GCA_003402575.1": "ASM340257v1",
    "GCA_003609995.1": "ASM360999v1",
    "GCA_006337085.1": "ASM633708v1",
    "GCA_016696765.1": "ASM1669676v1",
}


def genome_url(accession, assembly_name):
    """NCBI FTP URL of the gzipped genomic FASTA of an assembly."""
    prefix, number = accession.split('_')
    digits = number.split('.')[0]
    parts = [digits[i:i + 3] for i in range(0, 9, 3)]
    name = f"{accession}_{assembly_name}"
    return f"{NCBI_FTP}/{prefix}/{'/'.join(parts)}/{name}/{name}_genomic.fna.gz"


def make_session():
    session = requests.Session()
    retries = Retry(total=10,
                    backoff_factor=2,
                    status_forcelist=[500, 502, 503, 504],
                    raise_on_status=True)
    session.mount('https://', HTTPAdapter(max_retries=retries))
    return session


def download_genome(session, url, output_file):
    """Download a gzipped FASTA and store it decompressed."""
    response = session.get(url, timeout=60)
    response.raise_for_status()
    tmp_file = output_file.with_suffix(output_file.suffix + ".tmp")
    with open(tmp_file, 'wb') as out:
        out.write(gzip.decompress(response.content))
    tmp_file.replace(output_file)


def download_examples(output_dir):
    """Fetch the example genomes into <output_dir>/genomes, skipping existing files."""
    genome_dir = Path(output_dir) / "genomes"
    genome_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Downloading example genome data into {genome_dir}...")

    session = make_session()
    downloaded = []
    for accession, assembly_name in tqdm(EXAMPLE_GENOMES.items(), total=len(EXAMPLE_GENOMES)):
        output_file = genome_dir / f"{accession}.{config.SUFFIX_FASTA}"
        if output_file.exists():
            logger.info(f"File {output_file} already exists. Skipping download.")
            continue
        download_genome(session, genome_url(accession, assembly_name), output_file)
        downloaded.append(output_file)

    logger.info(f"{len(downloaded)} genomes downloaded to {genome_dir}")
    return downloaded


def main():
    parser = argparse.ArgumentParser(description="Download the example genome assemblies")
    parser.add_argument("-o", "--output-dir", default="example", help="Output directory (default: example)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format=config.LOG_FORMAT)
    try:
        download_examples(args.output_dir)
    except requests.exceptions.RequestException as e:
        logger.error(f"Download failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
