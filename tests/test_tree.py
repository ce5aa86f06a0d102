"""
Tests for header conversion and FastTree invocation.
"""

import pytest

from catree import tree
from catree.common import PipelineError
from catree.tree import convert_fasta_headers, load_id_lookup, run_fasttree


@pytest.fixture
def lookup_table(temp_dir):
    path = temp_dir / "ids.tsv"
    path.write_text("G1\tEscherichia_coli\nG2\tBacillus_subtilis\n\nbroken_line\n")
    return path


class TestConvertHeaders:
    def test_load_lookup(self, lookup_table):
        assert load_id_lookup(lookup_table) == {
            "G1": "Escherichia_coli",
            "G2": "Bacillus_subtilis",
        }

    def test_known_headers_renamed(self, temp_dir, lookup_table):
        aln = temp_dir / "in.aln"
        aln.write_text(">G1\nAC-T\n>G3\nACGT\n>G2\nA--T\n")
        out = temp_dir / "out.aln"
        convert_fasta_headers(aln, lookup_table, out)
        assert out.read_text() == ">Escherichia_coli\nAC-T\n>G3\nACGT\n>Bacillus_subtilis\nA--T\n"

    def test_in_place(self, temp_dir, lookup_table):
        aln = temp_dir / "in.aln"
        aln.write_text(">G1\nACGT\n")
        convert_fasta_headers(aln, lookup_table, aln)
        assert aln.read_text() == ">Escherichia_coli\nACGT\n"
        assert not (temp_dir / "in.aln.tmp").exists()

    def test_full_header_must_match(self, temp_dir, lookup_table):
        aln = temp_dir / "in.aln"
        aln.write_text(">G1 extra\nACGT\n")
        convert_fasta_headers(aln, lookup_table, aln)
        assert aln.read_text() == ">G1 extra\nACGT\n"

    def test_missing_lookup(self, temp_dir):
        aln = temp_dir / "in.aln"
        aln.write_text(">G1\nACGT\n")
        with pytest.raises(PipelineError, match="Lookup table file not found"):
            convert_fasta_headers(aln, temp_dir / "none.tsv", aln)

    def test_missing_input(self, temp_dir, lookup_table):
        with pytest.raises(PipelineError, match="Input fasta file not found"):
            convert_fasta_headers(temp_dir / "none.aln", lookup_table, temp_dir / "out.aln")


class TestFastTree:
    def test_command_and_output(self, temp_dir, monkeypatch):
        calls = []

        def fake_run_command(cmd, stdout=None, stderr=None, env=None):
            calls.append([str(c) for c in cmd])
            stdout.write("(G1:0.1,G2:0.2);\n")

        monkeypatch.setattr(tree, "run_command", fake_run_command)
        aln = temp_dir / "results_core.aln"
        aln.write_text(">G1\nACGT\n>G2\nACGA\n")

        out_tree = run_fasttree(aln, "-nt -gtr")

        assert out_tree == temp_dir / "results_core.nwk"
        assert out_tree.read_text() == "(G1:0.1,G2:0.2);\n"
        cmd = calls[0]
        assert cmd[:5] == ["FastTree", "-nt", "-gtr", "-quiet", "-log"]
        assert cmd[5].endswith("_fasttree.log")
        assert cmd[6] == str(aln)

    def test_failed_run_removes_tree(self, temp_dir, monkeypatch):
        def failing(cmd, stdout=None, stderr=None, env=None):
            raise PipelineError("Error in FastTree command")

        monkeypatch.setattr(tree, "run_command", failing)
        aln = temp_dir / "results_core.aln"
        aln.write_text(">G1\nACGT\n")

        with pytest.raises(PipelineError, match="FastTree execution failed"):
            run_fasttree(aln)
        assert not (temp_dir / "results_core.nwk").exists()

    def test_existing_tree(self, temp_dir):
        aln = temp_dir / "results_core.aln"
        aln.write_text(">G1\nACGT\n")
        (temp_dir / "results_core.nwk").write_text("();")
        with pytest.raises(PipelineError, match="already exists"):
            run_fasttree(aln)

    def test_missing_alignment(self, temp_dir):
        with pytest.raises(PipelineError, match="does not exist"):
            run_fasttree(temp_dir / "missing.aln")
