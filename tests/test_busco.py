"""
Tests for BUSCO summary parsing, genome filtering and core gene extraction.
"""

import logging

import pandas as pd
import pytest
from Bio import SeqIO

from catree import busco
from catree.busco import (
    busco_prevalence, common_complete_buscos, complete_buscos, core_extraction,
    parse_busco_summary, plot_threshold_curve, run_busco, run_busco_parallel,
    select_genomes, summarize_busco
)
from catree.common import PipelineError


class TestSummary:
    def test_parse_busco_summary(self, busco_results):
        row = parse_busco_summary(busco_results / "G1")
        assert row["ID"] == "G1"
        assert row["Complete_Single"] == 118
        assert row["Complete_Duplicated"] == 2
        assert row["Fragmented"] == 1
        assert row["Missing"] == 3
        assert row["Completeness(%)"] == pytest.approx(95.16)
        assert row["Contamination(%)"] == pytest.approx(1.61)

    def test_parse_missing_summary(self, temp_dir, caplog):
        (temp_dir / "empty").mkdir()
        with caplog.at_level(logging.WARNING):
            assert parse_busco_summary(temp_dir / "empty") is None
        assert "No short_summary.txt found" in caplog.text

    def test_zero_counts(self, temp_dir, busco_writer):
        busco_writer(temp_dir, "Z", single=0)
        row = parse_busco_summary(temp_dir / "Z")
        assert row["Completeness(%)"] == 0
        assert row["Contamination(%)"] == 0

    def test_summarize_busco_writes_table(self, busco_results, temp_dir):
        output = temp_dir / "busco_summary.tsv"
        df = summarize_busco(busco_results, output)
        assert df["ID"].tolist() == ["G1", "G2", "G3"]

        lines = output.read_text().splitlines()
        assert lines[0].split('\t') == busco.SUMMARY_COLUMNS
        assert lines[1] == "G1\t118\t2\t1\t3\t95.16\t1.61"

    def test_summarize_refuses_existing_output(self, busco_results, temp_dir):
        output = temp_dir / "busco_summary.tsv"
        output.write_text("old")
        with pytest.raises(PipelineError, match="already exists"):
            summarize_busco(busco_results, output)

    def test_summarize_missing_dir(self, temp_dir):
        with pytest.raises(PipelineError, match="does not exist"):
            summarize_busco(temp_dir / "nope", temp_dir / "out.tsv")


class TestGenomeSelection:
    def test_thresholds_are_strict(self):
        summary = pd.DataFrame({
            "ID": ["A", "B", "C", "D"],
            "Completeness(%)": [50.0, 50.01, 90.0, 90.0],
            "Contamination(%)": [0.0, 0.0, 10.0, 9.99],
        })
        accepted, rejected = select_genomes(summary, 50, 10)
        assert accepted == ["B", "D"]
        assert rejected == ["A", "C"]

    def test_select_from_file(self, busco_results, temp_dir):
        output = temp_dir / "summary.tsv"
        summarize_busco(busco_results, output)
        accepted, rejected = select_genomes(output)
        assert accepted == ["G1", "G2"]
        assert rejected == ["G3"]


class TestCompleteBuscos:
    def test_complete_only(self, busco_results):
        assert complete_buscos(busco_results, "G2") == {"1at2", "3at2", "4at2"}

    def test_missing_run_dir(self, temp_dir, caplog):
        (temp_dir / "G9").mkdir()
        with caplog.at_level(logging.WARNING):
            assert complete_buscos(temp_dir, "G9") is None
        assert "Missing BUSCO run directory for G9" in caplog.text

    def test_common_across_genomes(self, busco_results):
        assert common_complete_buscos(busco_results, ["G1", "G2"]) == ["1at2", "3at2"]
        assert common_complete_buscos(busco_results, ["G1", "G2", "G3"]) == ["1at2"]

    def test_genome_without_table_breaks_consensus(self, busco_results):
        (busco_results / "G4").mkdir()
        assert common_complete_buscos(busco_results, ["G1", "G4"]) == []

    def test_prevalence(self, busco_results, temp_dir):
        df = busco_prevalence(busco_results, ["G1", "G2"])
        assert df["busco_id"].tolist() == ["1at2", "3at2", "2at2", "4at2"]
        assert df["prevalence"].tolist() == [1.0, 1.0, 0.5, 0.5]

        curve = plot_threshold_curve(df, temp_dir / "curve.png")
        assert (temp_dir / "curve.png").exists()
        assert curve["gene_count"].iloc[0] == 4
        assert curve["gene_count"].iloc[-1] == 2


class TestCoreExtraction:
    @pytest.fixture
    def summary_file(self, busco_results, temp_dir):
        path = temp_dir / "busco_summary.tsv"
        summarize_busco(busco_results, path)
        return path

    def test_extracts_common_genes_with_genome_headers(self, busco_results, summary_file, temp_dir):
        out_dir = temp_dir / "core"
        core_ids = core_extraction(summary_file, busco_results, out_dir=out_dir)

        assert core_ids == ["1at2", "3at2"]
        assert sorted(p.name for p in out_dir.iterdir()) == [
            "1at2.faa", "1at2.fna", "3at2.faa", "3at2.fna"]

        records = list(SeqIO.parse(out_dir / "1at2.fna", "fasta"))
        assert [r.id for r in records] == ["G1", "G2"]
        assert all(r.description == r.id for r in records)
        assert str(records[0].seq) == "ATGAAACCCGGGTTTTAA"

    def test_logs_accepted_and_removed(self, busco_results, summary_file, temp_dir, caplog):
        with caplog.at_level(logging.INFO):
            core_extraction(summary_file, busco_results, out_dir=temp_dir / "core")
        assert "Accepted 2 genomes and removed 1 genomes." in caplog.text
        assert "2 common Complete BUSCOs found" in caplog.text

    def test_no_genome_passes(self, busco_results, summary_file, temp_dir):
        with pytest.raises(PipelineError, match="No genomes meet the criteria"):
            core_extraction(summary_file, busco_results, completeness=99, out_dir=temp_dir / "core")

    def test_no_common_buscos(self, temp_dir, busco_writer):
        busco_dir = temp_dir / "busco"
        busco_writer(busco_dir, "A", single=100, complete_ids=["1at2"])
        busco_writer(busco_dir, "B", single=100, complete_ids=["2at2"])
        summary = temp_dir / "summary.tsv"
        summarize_busco(busco_dir, summary)
        with pytest.raises(PipelineError, match="No common Complete BUSCOs"):
            core_extraction(summary, busco_dir, out_dir=temp_dir / "core")

    def test_existing_output_dir(self, busco_results, summary_file, temp_dir):
        (temp_dir / "core").mkdir()
        with pytest.raises(PipelineError, match="already exists"):
            core_extraction(summary_file, busco_results, out_dir=temp_dir / "core")

    def test_missing_summary(self, busco_results, temp_dir):
        with pytest.raises(PipelineError, match="Summary file"):
            core_extraction(temp_dir / "nope.tsv", busco_results, out_dir=temp_dir / "core")


class TestRunBusco:
    @pytest.fixture
    def commands(self, monkeypatch):
        calls = []

        def fake_run_command(cmd, stdout=None, stderr=None, env=None):
            calls.append([str(c) for c in cmd])

        monkeypatch.setattr(busco, "run_command", fake_run_command)
        return calls

    def test_command_line(self, temp_dir, commands):
        fasta = temp_dir / "GCA_1.1.fna"
        fasta.write_text(">c\nACGT\n")
        result_dir = run_busco("/db/bacteria_odb10", str(fasta), str(temp_dir / "out"), 2,
                               prefix=["conda", "run", "-n", "busco5"])

        assert result_dir == temp_dir / "out" / "GCA_1"
        assert commands == [[
            "conda", "run", "-n", "busco5", "busco",
            "-m", "genome", "-i", str(fasta), "--offline",
            "--out_path", str(temp_dir / "out"), "-o", "GCA_1",
            "-l", "/db/bacteria_odb10", "-c", "2",
        ]]

    def test_existing_result_dir(self, temp_dir, commands):
        (temp_dir / "out" / "GCA_1").mkdir(parents=True)
        with pytest.raises(PipelineError, match="already exists"):
            run_busco("/db", str(temp_dir / "GCA_1.fna"), str(temp_dir / "out"), prefix=["x"])
        assert commands == []

    def test_parallel_threads_per_job(self, temp_dir, commands, caplog):
        in_dir = temp_dir / "genomes"
        in_dir.mkdir()
        (in_dir / "G1.fna").write_text(">c\nACGT\n")

        with caplog.at_level(logging.WARNING):
            run_busco_parallel("/db", in_dir, "fna", temp_dir / "busco", threads=2, prefix=["x"])
        assert "Threads per job too low, setting to 1." in caplog.text
        assert commands[0][-1] == "1"

    def test_parallel_no_inputs(self, temp_dir, commands):
        with pytest.raises(PipelineError, match="No input files"):
            run_busco_parallel("/db", temp_dir, "fna", temp_dir / "busco", prefix=["x"])

    def test_parallel_existing_output(self, temp_dir, commands):
        (temp_dir / "G1.fna").write_text(">c\nACGT\n")
        (temp_dir / "busco").mkdir()
        with pytest.raises(PipelineError, match="already exists"):
            run_busco_parallel("/db", temp_dir, "fna", temp_dir / "busco", prefix=["x"])
