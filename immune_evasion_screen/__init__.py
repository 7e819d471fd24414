"""
Source code for screening genes whose expression is jointly constrained by copy number,
immune infiltration, and survival in TCGA cohorts.

This package contains modules for normalizing expression and copy number matrices,
stratifying samples by copy number and expression, screening genes by correlation with
immune references and by association with survival, merging screened gene lists, and
annotating surviving genes with immune pathway enrichment.
"""
