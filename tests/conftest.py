"""
Shared pytest fixtures for catree tests.
"""

import tempfile
from pathlib import Path

import pytest


SHORT_SUMMARY = """# BUSCO version is: 5.4.3
# The lineage dataset is: bacteria_odb10 (Creation date: 2020-03-06, number of genomes: 4085, number of BUSCOs: 124)

\t***** Results: *****

\tC:{c_pct}%[S:{s_pct}%,D:{d_pct}%],F:{f_pct}%,M:{m_pct}%,n:{total}
\t{complete}\tComplete BUSCOs (C)
\t{single}\tComplete and single-copy BUSCOs (S)
\t{duplicated}\tComplete and duplicated BUSCOs (D)
\t{fragmented}\tFragmented BUSCOs (F)
\t{missing}\tMissing BUSCOs (M)
\t{total}\tTotal BUSCO groups searched
"""


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that's cleaned up after the test."""
    with tempfile.TemporaryDirectory(prefix="catree_test_") as tmpdir:
        yield Path(tmpdir)


def write_busco_result(busco_dir, genome, single=100, duplicated=0, fragmented=0, missing=0,
                       complete_ids=(), duplicated_ids=(), sequences=None):
    """Lay out a BUSCO genome-mode result directory the way BUSCO 5 writes it."""
    run_dir = Path(busco_dir) / genome / "run_bacteria_odb10"
    seq_dir = run_dir / "busco_sequences" / "single_copy_busco_sequences"
    seq_dir.mkdir(parents=True)

    total = single + duplicated + fragmented + missing
    pct = lambda n: round(n / total * 100, 1) if total else 0.0
    (run_dir / "short_summary.txt").write_text(SHORT_SUMMARY.format(
        complete=single + duplicated, single=single, duplicated=duplicated,
        fragmented=fragmented, missing=missing, total=total,
        c_pct=pct(single + duplicated), s_pct=pct(single), d_pct=pct(duplicated),
        f_pct=pct(fragmented), m_pct=pct(missing),
    ))

    lines = ["# BUSCO version is: 5.4.3",
             "# Busco id\tStatus\tSequence\tGene Start\tGene End\tStrand\tScore\tLength"]
    for n, busco_id in enumerate(complete_ids):
        lines.append(f"{busco_id}\tComplete\tcontig_1\t{n * 1000 + 1}\t{n * 1000 + 900}\t+\t500.0\t300")
    for busco_id in duplicated_ids:
        lines.append(f"{busco_id}\tDuplicated\tcontig_1\t1\t900\t+\t500.0\t300")
        lines.append(f"{busco_id}\tDuplicated\tcontig_2\t1\t900\t-\t480.0\t300")
    lines.append("99999at2\tMissing")
    (run_dir / "full_table.tsv").write_text("\n".join(lines) + "\n")

    for busco_id in complete_ids:
        seq = (sequences or {}).get(busco_id, "ATGAAACCCGGGTTTTAA")
        (seq_dir / f"{busco_id}.fna").write_text(f">contig_1:1-900\n{seq}\n")
        (seq_dir / f"{busco_id}.faa").write_text(f">contig_1:1-900\nMKPGF\n")

    return run_dir


@pytest.fixture
def busco_results(temp_dir):
    """Three genomes: G1 and G2 pass the default filter, G3 is contaminated."""
    busco_dir = temp_dir / "busco"
    write_busco_result(busco_dir, "G1", single=118, duplicated=2, fragmented=1, missing=3,
                       complete_ids=["1at2", "2at2", "3at2"])
    write_busco_result(busco_dir, "G2", single=110, duplicated=4, fragmented=2, missing=8,
                       complete_ids=["1at2", "3at2", "4at2"], duplicated_ids=["2at2"])
    write_busco_result(busco_dir, "G3", single=80, duplicated=30, fragmented=4, missing=10,
                       complete_ids=["1at2", "2at2"])
    return busco_dir


@pytest.fixture
def genome_fasta(temp_dir):
    """A two-contig assembly."""
    path = temp_dir / "GENOME1.fna"
    path.write_text(
        ">contig_1 some description\n"
        "AAAACCCCGG\n"
        "GGTTTTACGT\n"
        ">contig_10\n"
        "TTTTTTTTTTGGGGGGGGGG\n"
    )
    return path


@pytest.fixture
def barrnap_gff(temp_dir):
    path = temp_dir / "GENOME1_barrnap.gff"
    path.write_text(
        "##gff-version 3\n"
        "contig_1\tbarrnap:0.9\trRNA\t5\t12\t1.2e-100\t+\t.\tName=16S_rRNA;product=16S ribosomal RNA\n"
        "contig_1\tbarrnap:0.9\trRNA\t1\t8\t1.2e-100\t-\t.\tName=16S_rRNA;product=16S ribosomal RNA\n"
        "contig_10\tbarrnap:0.9\trRNA\t1\t6\t1.2e-10\t+\t.\tName=16S_rRNA;product=16S ribosomal RNA (partial);note=aligned only 40 percent\n"
        "contig_10\tbarrnap:0.9\trRNA\t1\t20\t1.2e-100\t+\t.\tName=23S_rRNA;product=23S ribosomal RNA\n"
    )
    return path


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "cli: mark test as exercising a command line entry point"
    )


@pytest.fixture
def busco_writer():
    """Builder for additional BUSCO result directories."""
    return write_busco_result
