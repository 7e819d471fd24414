'''
`pipeline.py` runs the screening funnel for one TCGA cohort.

Pipeline:
1. Load and normalize matrices of expression values, counts, and GISTIC2 scores.
2. Stratify samples of each gene into Group A (inactivated) and Group B (activated).
3. Screen genes by correlation of expression with abundance of activated CD8 T cells.
4. Screen stratified genes by correlation of expression with ssGSEA scores of an immune signature.
5. Filter genes by coefficients of multivariate Cox models and screen the remaining genes with log-rank tests.
6. Merge the filtered tables into the genes that pass every screen.
7. Annotate merged genes with numbers of immune terms and antigen terms.
8. Save every intermediate table and a table of numbers of genes before and after each stage.

Usage:
python -m immune_evasion_screen.pipeline --cohort TCGA-LUAD --number-of-workers 8
'''

from dataclasses import dataclass, field
from functools import partial
from typing import Callable
import argparse
import logging
import os

import pandas as pd

from immune_evasion_screen.config import (
    NAME_OF_PRIMARY_CELL_TYPE,
    NAME_OF_REFERENCE_OF_CD8_T_CELLS,
    NAME_OF_REFERENCE_OF_SIGNATURE,
    CohortConfiguration,
    Paths,
    create_cohort_configuration
)
from immune_evasion_screen.copy_number_analysis.stratification import create_data_frame_of_genes_and_groups, stratify_genes
from immune_evasion_screen.data_processing.data_loading import (
    create_data_frame_of_covariates,
    create_survival_table,
    load_immune_cell_abundance_matrix,
    load_matrix,
    load_multivariate_coefficients,
    load_signature_genes,
    read_table,
    select_reference
)
from immune_evasion_screen.data_processing.normalization import normalize_copy_number_matrix, normalize_matrix
from immune_evasion_screen.gene_list_merging import merge_gene_lists
from immune_evasion_screen.immune_analysis.correlation_screening import screen_correlations
from immune_evasion_screen.pathway_analysis.pathway_annotation import annotate_pathways
from immune_evasion_screen.survival_analysis.cox_models import fit_multivariate_Cox_models
from immune_evasion_screen.survival_analysis.cutpoints import find_maximally_selected_cutpoint
from immune_evasion_screen.survival_analysis.survival_screening import filter_multivariate_coefficients, screen_log_rank
from immune_evasion_screen.utils.shared_functions import AuditTrail, save_results


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    '''
    Class Collaborators bundles the functions that the funnel delegates to external statistical packages.
    '''

    compute_signature_scores: Callable[[pd.DataFrame, list[str]], pd.Series]
    find_cutpoint: Callable[[pd.DataFrame], float | None]
    fit_differential_expression: Callable[[pd.DataFrame, pd.Series], pd.Series]
    run_gene_set_enrichment: Callable[[pd.Series, str], pd.DataFrame]
    fit_multivariate_Cox_models: Callable[..., pd.DataFrame] = field(default = fit_multivariate_Cox_models)


def create_default_collaborators(cutpoint_method: str = "survminer", minimum_proportion: float = 0.1) -> Collaborators:
    '''
    Create collaborators backed by R packages GSVA, survminer, DESeq2, and clusterProfiler.
    Cutpoints are found by survminer or by maximally selected log-rank statistics computed with lifelines.
    '''
    # R is started only when default collaborators are requested.
    from immune_evasion_screen.utils.r_functions import (
        compute_ssGSEA_scores,
        find_cutpoint_with_survminer,
        fit_DESeq2,
        run_gseGO
    )
    if cutpoint_method == "survminer":
        find_cutpoint = partial(find_cutpoint_with_survminer, minimum_proportion = minimum_proportion)
    elif cutpoint_method == "maximally_selected":
        find_cutpoint = partial(find_maximally_selected_cutpoint, minimum_proportion = minimum_proportion)
    else:
        raise ValueError(f"Cutpoint method must be survminer or maximally_selected, not {cutpoint_method}.")
    return Collaborators(
        compute_signature_scores = compute_ssGSEA_scores,
        find_cutpoint = find_cutpoint,
        fit_differential_expression = fit_DESeq2,
        run_gene_set_enrichment = run_gseGO
    )


def run_pipeline(cohort_configuration: CohortConfiguration, paths: Paths, collaborators: Collaborators) -> pd.DataFrame:
    '''
    Run the screening funnel for one cohort and provide the final table of genes,
    screening statistics, and numbers of immune terms and antigen terms.
    '''
    cohort_name = cohort_configuration.cohort_name
    thresholds = cohort_configuration.thresholds
    sample_type_code = cohort_configuration.sample_type_code
    audit_trail = AuditTrail(cohort_name)

    logger.info(f"Screening funnel will be run for cohort {cohort_name} and samples of type {sample_type_code}.")

    # normalization
    raw_expression_matrix = load_matrix(paths.expression_matrix)
    expression_matrix = normalize_matrix(
        raw_expression_matrix,
        thresholds.minimum_mean_of_relative_abundances,
        sample_type_code
    )
    counts_matrix = normalize_matrix(load_matrix(paths.counts_matrix), thresholds.minimum_mean_of_counts, sample_type_code)
    copy_number_matrix = normalize_copy_number_matrix(load_matrix(paths.copy_number_matrix), sample_type_code)
    audit_trail.record("normalization", raw_expression_matrix.index.nunique(), expression_matrix.index)

    # stratification
    dictionary_of_genes_and_groups = stratify_genes(
        copy_number_matrix,
        expression_matrix,
        minimum_group_size = thresholds.minimum_group_size,
        bottom_fraction = thresholds.bottom_fraction,
        top_fraction = thresholds.top_fraction
    )
    save_results(create_data_frame_of_genes_and_groups(dictionary_of_genes_and_groups), paths.stratified_groups, index = False)
    audit_trail.record("stratification", len(expression_matrix), dictionary_of_genes_and_groups.keys())

    # correlation with abundance of activated CD8 T cells
    series_of_abundances_of_CD8_T_cells = select_reference(
        load_immune_cell_abundance_matrix(paths.immune_cell_abundance_matrix),
        NAME_OF_PRIMARY_CELL_TYPE
    )
    unfiltered_correlations_with_CD8_T_cells, filtered_correlations_with_CD8_T_cells = screen_correlations(
        expression_matrix,
        series_of_abundances_of_CD8_T_cells,
        NAME_OF_REFERENCE_OF_CD8_T_CELLS,
        maximum_rho = thresholds.maximum_rho,
        maximum_FDR = thresholds.maximum_FDR_of_correlation
    )
    save_results(unfiltered_correlations_with_CD8_T_cells, paths.unfiltered_correlations_with_CD8_T_cells)
    save_results(filtered_correlations_with_CD8_T_cells, paths.filtered_correlations_with_CD8_T_cells)
    audit_trail.record("correlation_with_CD8_T_cells", len(expression_matrix), filtered_correlations_with_CD8_T_cells.index)

    # correlation with scores of immune signature
    list_of_signature_genes = load_signature_genes(paths.signature_genes)
    series_of_signature_scores = collaborators.compute_signature_scores(expression_matrix, list_of_signature_genes)
    save_results(series_of_signature_scores.rename("score").to_frame(), paths.signature_scores)
    unfiltered_correlations_with_signature, filtered_correlations_with_signature = screen_correlations(
        expression_matrix,
        series_of_signature_scores,
        NAME_OF_REFERENCE_OF_SIGNATURE,
        list_of_candidate_genes = list(dictionary_of_genes_and_groups),
        maximum_rho = thresholds.maximum_rho,
        maximum_FDR = thresholds.maximum_FDR_of_correlation
    )
    save_results(unfiltered_correlations_with_signature, paths.unfiltered_correlations_with_signature)
    save_results(filtered_correlations_with_signature, paths.filtered_correlations_with_signature)
    audit_trail.record("correlation_with_signature", len(dictionary_of_genes_and_groups), filtered_correlations_with_signature.index)

    # survival
    clinical_data = read_table(paths.clinical_data, index_col = None)
    survival_table = create_survival_table(clinical_data)
    if os.path.exists(paths.multivariate_coefficients):
        data_frame_of_coefficients = load_multivariate_coefficients(paths.multivariate_coefficients)
    else:
        logger.info(f"{paths.multivariate_coefficients} does not exist. Multivariate Cox models will be fit for stratified genes.")
        data_frame_of_coefficients = collaborators.fit_multivariate_Cox_models(
            expression_matrix,
            survival_table,
            create_data_frame_of_covariates(clinical_data),
            list_of_genes = list(dictionary_of_genes_and_groups)
        )
    unfiltered_Cox_coefficients, filtered_Cox_coefficients = filter_multivariate_coefficients(
        data_frame_of_coefficients,
        minimum_coefficient = thresholds.minimum_Cox_coefficient
    )
    save_results(unfiltered_Cox_coefficients, paths.unfiltered_Cox_coefficients)
    save_results(filtered_Cox_coefficients, paths.filtered_Cox_coefficients)
    audit_trail.record("multivariate_Cox_filter", len(unfiltered_Cox_coefficients), filtered_Cox_coefficients.index)
    unfiltered_log_rank_tests, filtered_log_rank_tests = screen_log_rank(
        expression_matrix,
        survival_table,
        filtered_Cox_coefficients.index.tolist(),
        collaborators.find_cutpoint,
        maximum_FDR = thresholds.maximum_FDR_of_log_rank_test
    )
    save_results(unfiltered_log_rank_tests, paths.unfiltered_log_rank_tests)
    save_results(filtered_log_rank_tests, paths.filtered_log_rank_tests)
    audit_trail.record("log_rank_screen", len(filtered_Cox_coefficients), filtered_log_rank_tests.index)

    # merging
    merged_gene_list = merge_gene_lists(
        [
            filtered_correlations_with_CD8_T_cells,
            filtered_correlations_with_signature,
            filtered_Cox_coefficients,
            filtered_log_rank_tests
        ]
    )
    save_results(merged_gene_list, paths.merged_gene_list)
    audit_trail.record("merging", len(filtered_correlations_with_CD8_T_cells), merged_gene_list.index)

    # pathway annotation
    list_of_merged_genes = [gene for gene in merged_gene_list.index if gene in dictionary_of_genes_and_groups]
    data_frame_of_numbers_of_terms = annotate_pathways(
        list_of_merged_genes,
        counts_matrix,
        dictionary_of_genes_and_groups,
        collaborators.fit_differential_expression,
        collaborators.run_gene_set_enrichment,
        number_of_workers = cohort_configuration.number_of_workers,
        kind_of_pool = cohort_configuration.kind_of_pool,
        maximum_p_value = thresholds.maximum_p_value_of_enrichment,
        maximum_adjusted_p_value = thresholds.maximum_adjusted_p_value_of_enrichment
    )
    final_gene_list = merged_gene_list.join(data_frame_of_numbers_of_terms, how = "inner")
    save_results(final_gene_list, paths.final_gene_list)
    audit_trail.record("pathway_annotation", len(merged_gene_list), final_gene_list.index)
    audit_trail.save(paths.stage_counts)

    logger.info(f"Screening funnel for cohort {cohort_name} yielded {len(final_gene_list)} genes.")

    return final_gene_list


def main(list_of_arguments: list[str] | None = None):
    parser = argparse.ArgumentParser(description = "Screen genes of a TCGA cohort for immune evasion.")
    parser.add_argument("--cohort", required = True, help = "Name of TCGA cohort, e.g., TCGA-LUAD.")
    parser.add_argument("--root", default = None, help = "Directory containing data/ and output/.")
    parser.add_argument("--number-of-workers", type = int, default = 4, help = "Number of workers annotating pathways.")
    parser.add_argument("--kind-of-pool", choices = ["processes", "threads"], default = "processes", help = "Kind of pool of workers.")
    parser.add_argument(
        "--cutpoint-method",
        choices = ["survminer", "maximally_selected"],
        default = "survminer",
        help = "Method for finding optimal cutpoints of expression."
    )
    parser.add_argument("--minimum-group-size", type = int, default = 30, help = "Minimum number of samples in Groups A and B.")
    args = parser.parse_args(list_of_arguments)
    if args.kind_of_pool == "threads":
        # Functions bridging to R share one embedded R session.
        parser.error("--kind-of-pool threads cannot be used with functions bridging to R; use processes.")

    cohort_configuration = create_cohort_configuration(
        args.cohort,
        number_of_workers = args.number_of_workers,
        kind_of_pool = args.kind_of_pool,
        minimum_group_size = args.minimum_group_size
    )
    paths = Paths(args.cohort, root = args.root)
    paths.ensure_dependencies_exist()
    collaborators = create_default_collaborators(
        cutpoint_method = args.cutpoint_method,
        minimum_proportion = cohort_configuration.thresholds.minimum_proportion_of_patients_per_group
    )
    run_pipeline(cohort_configuration, paths, collaborators)


if __name__ == "__main__":
    main()
