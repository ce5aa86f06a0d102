"""
Default parameters shared by the catree and ratree command line tools.
"""

import os

VERSION = "0.1.0"

HOME = os.path.expanduser("~")

# Conda / BUSCO
CONDA_ENV_FILE = os.path.join(HOME, "miniconda3", "etc", "profile.d", "conda.sh")
CONDA_ENV_NAME = "busco5"
BUSCO_REF = os.path.join(HOME, "db", "busco_downloads", "lineages", "bacteria_odb10")
BUSCO_JOBS = 4

# Inputs / outputs
SUFFIX_FASTA = "fna"
OUTPUT_PREFIX = "results"
OUTPUT_PREFIX_16S = "results_16s"

# Genome quality filter (percent)
COMPLETENESS = 50
CONTAMINATION = 10

THREADS = 4
TYPE = "nuc"  # nuc | aa

# External tool options
MAFFT_OPTS = "--auto"  # "--globalpair --maxiterate 1000"
TRIMAL_OPTS = "-automated1"  # "-gappyout"
FASTTREE_OPTS = {
    "nuc": "-nt",
    "aa": "-lg",
}
FASTTREE_OPTS_16S = "-nt -gtr"

# 16S rRNA
KINGDOM = "bac"  # bac | arc
IDENTITY = 0.97
SEARCH_16S = "product=16S ribosomal RNA"

SEQ_EXTENSIONS = {
    "nuc": "fna",
    "aa": "faa",
}

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
