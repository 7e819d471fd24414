from dataclasses import dataclass, field, replace
from pathlib import Path
import os


NAME_OF_PRIMARY_CELL_TYPE = "Activated CD8 T cell"

NAME_OF_REFERENCE_OF_CD8_T_CELLS = "CD8"
NAME_OF_REFERENCE_OF_SIGNATURE = "signature"

LIST_OF_GENE_ONTOLOGY_NAMESPACES = ["BP", "CC", "MF"]

# Sample-type codes occupy characters 14 and 15 of a TCGA barcode.
PRIMARY_SOLID_TUMOR = "01"
METASTATIC = "06"

DICTIONARY_OF_COHORTS_AND_SAMPLE_TYPE_CODES = {
    "TCGA-ACC": PRIMARY_SOLID_TUMOR,
    "TCGA-BLCA": PRIMARY_SOLID_TUMOR,
    "TCGA-BRCA": PRIMARY_SOLID_TUMOR,
    "TCGA-CESC": PRIMARY_SOLID_TUMOR,
    "TCGA-CHOL": PRIMARY_SOLID_TUMOR,
    "TCGA-COAD": PRIMARY_SOLID_TUMOR,
    "TCGA-DLBC": PRIMARY_SOLID_TUMOR,
    "TCGA-ESCA": PRIMARY_SOLID_TUMOR,
    "TCGA-GBM": PRIMARY_SOLID_TUMOR,
    "TCGA-HNSC": PRIMARY_SOLID_TUMOR,
    "TCGA-KICH": PRIMARY_SOLID_TUMOR,
    "TCGA-KIRC": PRIMARY_SOLID_TUMOR,
    "TCGA-KIRP": PRIMARY_SOLID_TUMOR,
    "TCGA-LAML": PRIMARY_SOLID_TUMOR,
    "TCGA-LGG": PRIMARY_SOLID_TUMOR,
    "TCGA-LIHC": PRIMARY_SOLID_TUMOR,
    "TCGA-LUAD": PRIMARY_SOLID_TUMOR,
    "TCGA-LUSC": PRIMARY_SOLID_TUMOR,
    "TCGA-MESO": PRIMARY_SOLID_TUMOR,
    "TCGA-OV": PRIMARY_SOLID_TUMOR,
    "TCGA-PAAD": PRIMARY_SOLID_TUMOR,
    "TCGA-PCPG": PRIMARY_SOLID_TUMOR,
    "TCGA-PRAD": PRIMARY_SOLID_TUMOR,
    "TCGA-READ": PRIMARY_SOLID_TUMOR,
    "TCGA-SARC": PRIMARY_SOLID_TUMOR,
    "TCGA-SKCM": METASTATIC, # Most SKCM tumors were sequenced from metastases.
    "TCGA-STAD": PRIMARY_SOLID_TUMOR,
    "TCGA-TGCT": PRIMARY_SOLID_TUMOR,
    "TCGA-THCA": PRIMARY_SOLID_TUMOR,
    "TCGA-THYM": PRIMARY_SOLID_TUMOR,
    "TCGA-UCEC": PRIMARY_SOLID_TUMOR,
    "TCGA-UCS": PRIMARY_SOLID_TUMOR,
    "TCGA-UVM": PRIMARY_SOLID_TUMOR
}


@dataclass(frozen = True)
class Thresholds:
    '''
    Class Thresholds records every numeric cutoff of the screening funnel.
    '''

    # normalization
    minimum_mean_of_relative_abundances: float = 1.0
    minimum_mean_of_counts: float = 10.0

    # stratification
    minimum_group_size: int = 30
    bottom_fraction: float = 0.3
    top_fraction: float = 0.7

    # correlation screening
    maximum_rho: float = -0.20
    maximum_FDR_of_correlation: float = 0.01

    # survival screening
    minimum_Cox_coefficient: float = 0.15
    maximum_FDR_of_log_rank_test: float = 0.05
    minimum_proportion_of_patients_per_group: float = 0.1

    # pathway annotation
    maximum_p_value_of_enrichment: float = 0.05
    maximum_adjusted_p_value_of_enrichment: float = 0.25


@dataclass(frozen = True)
class CohortConfiguration:
    '''
    Class CohortConfiguration is a template for the parameters that distinguish one run of the pipeline from another.
    '''

    cohort_name: str
    sample_type_code: str = PRIMARY_SOLID_TUMOR
    thresholds: Thresholds = field(default_factory = Thresholds)
    number_of_workers: int = 4
    kind_of_pool: str = "processes"


def create_cohort_configuration(cohort_name: str, **dictionary_of_overrides) -> CohortConfiguration:
    '''
    Create a cohort configuration with the sample-type code registered for the cohort.
    Keyword arguments that name a field of `Thresholds` override that threshold;
    other keyword arguments override fields of `CohortConfiguration`.
    '''
    if cohort_name not in DICTIONARY_OF_COHORTS_AND_SAMPLE_TYPE_CODES:
        raise ValueError(f"Cohort {cohort_name} is not a known TCGA cohort.")
    set_of_names_of_thresholds = set(Thresholds.__dataclass_fields__)
    dictionary_of_threshold_overrides = {
        name: value for name, value in dictionary_of_overrides.items() if name in set_of_names_of_thresholds
    }
    dictionary_of_cohort_overrides = {
        name: value for name, value in dictionary_of_overrides.items() if name not in set_of_names_of_thresholds
    }
    sample_type_code = dictionary_of_cohort_overrides.pop(
        "sample_type_code",
        DICTIONARY_OF_COHORTS_AND_SAMPLE_TYPE_CODES[cohort_name]
    )
    return CohortConfiguration(
        cohort_name = cohort_name,
        sample_type_code = sample_type_code,
        thresholds = replace(Thresholds(), **dictionary_of_threshold_overrides),
        **dictionary_of_cohort_overrides
    )


class Paths():
    '''
    Class Paths records dependencies and outputs of `immune_evasion_screen/pipeline.py` for one cohort
    and ensures dependencies exist.
    '''

    def __init__(self, cohort_name: str, root: str | Path | None = None):

        # dependencies
        self.root = Path(root if root is not None else os.environ.get("IMMUNE_EVASION_SCREEN_ROOT", "."))
        self.data = self.root / "data"
        self.data_of_cohort = self.data / cohort_name
        # -----
        self.expression_matrix = self.data_of_cohort / "expression_TPM.tsv"
        self.counts_matrix = self.data_of_cohort / "expression_counts.tsv"
        self.copy_number_matrix = self.data_of_cohort / "copy_number_GISTIC2_thresholded.tsv"
        self.clinical_data = self.data_of_cohort / "clinical_data.tsv"
        self.immune_cell_abundance_matrix = self.data / "TIL_abundances.tsv"
        self.signature_genes = self.data / "immune_signature_genes.txt"
        # Optional. Coefficients are computed when this file does not exist.
        self.multivariate_coefficients = self.data_of_cohort / "multivariate_Cox_coefficients.csv"

        # outputs
        self.output = self.root / "output" / cohort_name
        # -----
        self.stratified_groups = self.output / "stratified_groups.csv"
        self.unfiltered_correlations_with_CD8_T_cells = self.output / "unfiltered_correlations_with_CD8_T_cells.csv"
        self.filtered_correlations_with_CD8_T_cells = self.output / "filtered_correlations_with_CD8_T_cells.csv"
        self.signature_scores = self.output / "signature_scores.csv"
        self.unfiltered_correlations_with_signature = self.output / "unfiltered_correlations_with_signature.csv"
        self.filtered_correlations_with_signature = self.output / "filtered_correlations_with_signature.csv"
        self.unfiltered_Cox_coefficients = self.output / "unfiltered_Cox_coefficients.csv"
        self.filtered_Cox_coefficients = self.output / "filtered_Cox_coefficients.csv"
        self.unfiltered_log_rank_tests = self.output / "unfiltered_log_rank_tests.csv"
        self.filtered_log_rank_tests = self.output / "filtered_log_rank_tests.csv"
        self.merged_gene_list = self.output / "merged_gene_list.csv"
        self.final_gene_list = self.output / "final_gene_list.csv"
        self.stage_counts = self.output / "stage_counts.csv"


    def ensure_dependencies_exist(self):
        os.makedirs(self.output, exist_ok = True)
        for path in [
            self.expression_matrix,
            self.counts_matrix,
            self.copy_number_matrix,
            self.clinical_data,
            self.immune_cell_abundance_matrix,
            self.signature_genes
        ]:
            assert os.path.exists(path), f"The dependency of `immune_evasion_screen/pipeline.py` `{path}` does not exist."
