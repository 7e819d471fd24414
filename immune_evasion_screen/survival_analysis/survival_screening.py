'''
`survival_screening.py` screens genes by association with overall survival in two steps.

1. Multivariate filter. A table of coefficients and p values of Cox proportional hazards models of survival
   vs. expression of each gene, age, and sex is adjusted with the Benjamini-Hochberg procedure,
   and genes with coefficient greater than 0.15 pass.
2. Log-rank screen. For each gene passing the multivariate filter, patients are split at an optimal cutpoint
   of expression into a group High with expression above the cutpoint and a group Low with expression at most the cutpoint.
   A log-rank test compares the distributions of times to death of the two groups.
   The null hypothesis is that groups High and Low have the same distributions.
   p values are adjusted across genes with the Benjamini-Hochberg procedure and genes with FDR less than 0.05 pass.

Genes without a valid cutpoint are skipped. An error while testing one gene is logged with the gene
and the gene is excluded; remaining genes are still tested.
'''

from typing import Callable
import logging

import numpy as np
import pandas as pd
from lifelines.statistics import logrank_test

from immune_evasion_screen.data_processing.normalization import get_patient_ID
from immune_evasion_screen.utils.shared_functions import bh_fdr, check_required_columns


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


def get_name_of_expression_column(gene: str) -> str:
    # Genes may share names with columns like time, event, age, and sex.
    return f"expression_of_{gene}"


def create_data_frame_of_patients_and_expression_values(
    expression_matrix: pd.DataFrame,
    survival_table: pd.DataFrame
) -> pd.DataFrame:
    '''
    Provide a data frame indexed by patient ID with columns time and event followed by one column per gene.
    Sample IDs of the expression matrix are mapped to patient IDs; the first sample of each patient is kept.
    '''
    check_required_columns(survival_table, ["time", "event"], "survival table")
    data_frame_of_expression_values = expression_matrix.T.copy()
    data_frame_of_expression_values.index = [get_patient_ID(sample_ID) for sample_ID in data_frame_of_expression_values.index]
    data_frame_of_expression_values = data_frame_of_expression_values.loc[
        ~data_frame_of_expression_values.index.duplicated(keep = "first")
    ]
    data_frame_of_patients_and_expression_values = survival_table[["time", "event"]].join(
        data_frame_of_expression_values,
        how = "inner"
    )
    if data_frame_of_patients_and_expression_values.empty:
        raise ValueError("No patient of the survival table has expression values.")

    logger.info(f"{len(data_frame_of_patients_and_expression_values)} patients have survival data and expression values.")

    return data_frame_of_patients_and_expression_values


def filter_multivariate_coefficients(
    data_frame_of_coefficients: pd.DataFrame,
    minimum_coefficient: float = 0.15
) -> tuple[pd.DataFrame, pd.DataFrame]:
    '''
    Adjust p values of multivariate Cox models and keep genes with coefficient greater than `minimum_coefficient`.

    Parameters
    ----------
    data_frame_of_coefficients: pd.DataFrame -- data frame indexed by gene with columns coef and p_value

    Returns
    -------
    a tuple of unfiltered and filtered data frames with columns Cox_coef, Cox_p_value, and Cox_FDR
    '''
    check_required_columns(data_frame_of_coefficients, ["coef", "p_value"], "multivariate coefficients")
    unfiltered_data_frame = (
        data_frame_of_coefficients[["coef", "p_value"]]
        .rename(columns = {"coef": "Cox_coef", "p_value": "Cox_p_value"})
        .dropna()
        .copy()
    )
    unfiltered_data_frame["Cox_FDR"] = bh_fdr(unfiltered_data_frame["Cox_p_value"])
    filtered_data_frame = unfiltered_data_frame.loc[unfiltered_data_frame["Cox_coef"] > minimum_coefficient]

    logger.info(
        f"{len(filtered_data_frame)} of {len(unfiltered_data_frame)} genes have multivariate Cox coefficients greater than {minimum_coefficient}."
    )

    return unfiltered_data_frame, filtered_data_frame


def perform_log_rank_test_for_gene(
    data_frame_of_times_events_and_expression_values: pd.DataFrame,
    find_cutpoint: Callable[[pd.DataFrame], float | None]
) -> dict | None:
    '''
    Split patients at the cutpoint provided by `find_cutpoint` and perform a log-rank test of High vs. Low.
    Returns None if `find_cutpoint` provides no valid cutpoint.
    Raises ValueError if a group is empty or the p value is undefined.
    '''
    df = data_frame_of_times_events_and_expression_values.dropna(subset = ["time", "event", "expression"])
    cutpoint = find_cutpoint(df)
    if cutpoint is None or not np.isfinite(cutpoint):
        return None
    series_of_groups = np.where(df["expression"] > cutpoint, "High", "Low")
    high = df.loc[series_of_groups == "High"]
    low = df.loc[series_of_groups == "Low"]
    if len(high) == 0 or len(low) == 0:
        raise ValueError(f"Cutpoint {cutpoint} leaves {len(high)} patients in group High and {len(low)} patients in group Low.")
    results = logrank_test(
        high["time"],
        low["time"],
        event_observed_A = high["event"],
        event_observed_B = low["event"]
    )
    if not np.isfinite(results.p_value):
        raise ValueError(f"p value of log-rank test with cutpoint {cutpoint} is undefined.")
    return {
        "log_rank_cutpoint": cutpoint,
        "log_rank_number_of_patients_in_High": len(high),
        "log_rank_number_of_patients_in_Low": len(low),
        "log_rank_p_value": float(results.p_value)
    }


def screen_log_rank(
    expression_matrix: pd.DataFrame,
    survival_table: pd.DataFrame,
    list_of_genes: list[str],
    find_cutpoint: Callable[[pd.DataFrame], float | None],
    maximum_FDR: float = 0.05
) -> tuple[pd.DataFrame, pd.DataFrame]:
    '''
    Perform a log-rank test for each gene and keep genes with FDR less than `maximum_FDR`.

    Parameters
    ----------
    expression_matrix: pd.DataFrame -- matrix with genes as index and sample IDs as columns
    survival_table: pd.DataFrame -- data frame indexed by patient ID with columns time and event
    list_of_genes: list[str] -- genes to test, typically genes passing the multivariate filter
    find_cutpoint: callable -- maps a data frame with columns time, event, and expression to a cutpoint or None

    Returns
    -------
    a tuple of unfiltered and filtered data frames indexed by gene
    '''
    list_of_genes = [gene for gene in list_of_genes if gene in expression_matrix.index]

    logger.info(f"Log-rank tests will be performed for {len(list_of_genes)} genes.")

    list_of_results = []
    list_of_genes_without_cutpoints = []
    list_of_genes_with_errors = []
    if list_of_genes:
        data_frame_of_patients_and_expression_values = create_data_frame_of_patients_and_expression_values(
            expression_matrix.loc[list_of_genes].rename(index = get_name_of_expression_column),
            survival_table
        )
    for gene in list_of_genes:
        data_frame_of_times_events_and_expression_values = (
            data_frame_of_patients_and_expression_values[["time", "event", get_name_of_expression_column(gene)]]
            .rename(columns = {get_name_of_expression_column(gene): "expression"})
        )
        try:
            dictionary_of_results = perform_log_rank_test_for_gene(data_frame_of_times_events_and_expression_values, find_cutpoint)
        except Exception as exception:
            logger.warning(f"Log-rank test for gene {gene} failed and gene {gene} will be excluded: {exception}")
            list_of_genes_with_errors.append(gene)
            continue
        if dictionary_of_results is None:
            logger.info(f"Gene {gene} has no valid cutpoint and will be skipped.")
            list_of_genes_without_cutpoints.append(gene)
            continue
        list_of_results.append({"gene": gene, **dictionary_of_results})
    unfiltered_data_frame = pd.DataFrame(
        list_of_results,
        columns = [
            "gene",
            "log_rank_cutpoint",
            "log_rank_number_of_patients_in_High",
            "log_rank_number_of_patients_in_Low",
            "log_rank_p_value"
        ]
    ).set_index("gene")
    unfiltered_data_frame["log_rank_FDR"] = bh_fdr(unfiltered_data_frame["log_rank_p_value"])
    filtered_data_frame = unfiltered_data_frame.loc[unfiltered_data_frame["log_rank_FDR"] < maximum_FDR]

    logger.info(
        f"{len(filtered_data_frame)} of {len(unfiltered_data_frame)} tested genes have log-rank FDR less than {maximum_FDR}; "
        f"{len(list_of_genes_without_cutpoints)} genes had no valid cutpoint and {len(list_of_genes_with_errors)} genes failed."
    )

    return unfiltered_data_frame, filtered_data_frame
