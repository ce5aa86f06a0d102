"""
Phylogenetic tree pipelines for bacterial genome assemblies.

Two workflows are provided:
  catree  core genes detected with BUSCO -> MAFFT -> TrimAl -> FastTree
  ratree  16S rRNA genes predicted with barrnap -> vsearch -> MAFFT -> TrimAl -> FastTree
"""

__version__ = "0.1.0"
