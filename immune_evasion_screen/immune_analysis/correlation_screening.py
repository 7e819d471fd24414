'''
`correlation_screening.py` screens genes by Spearman correlation between their expression and a reference,
e.g., abundance of activated CD8 T cells or ssGSEA scores of an immune signature.

For each gene, a Spearman correlation coefficient rho and a two-sided p value are computed
over samples with defined expression and reference values.
p values are adjusted across all tested genes into False Discovery Rates with the Benjamini-Hochberg procedure.
A gene passes when rho is at most -0.20 and its FDR is less than 0.01;
a negative correlation indicates that higher expression associates with lower immune activity.

Columns of both tables are prefixed with the name of the reference so that tables of different references
may be joined.
'''

import logging

import numpy as np
import pandas as pd
from scipy.stats import spearmanr

from immune_evasion_screen.utils.shared_functions import bh_fdr


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


MINIMUM_NUMBER_OF_PAIRED_SAMPLES = 3


def compute_spearman_correlation(series_of_expression_values: pd.Series, series_of_reference_values: pd.Series) -> tuple[float, float]:
    '''
    Compute rho and a two-sided p value over samples where both series are defined.
    Returns (nan, nan) when fewer than 3 pairs remain or either series is constant.
    '''
    data_frame_of_pairs = pd.concat(
        [series_of_expression_values.rename("expression"), series_of_reference_values.rename("reference")],
        axis = 1,
        join = "inner"
    ).dropna()
    if (
        len(data_frame_of_pairs) < MINIMUM_NUMBER_OF_PAIRED_SAMPLES or
        data_frame_of_pairs["expression"].nunique() < 2 or
        data_frame_of_pairs["reference"].nunique() < 2
    ):
        return np.nan, np.nan
    rho, p_value = spearmanr(data_frame_of_pairs["expression"], data_frame_of_pairs["reference"])
    return float(rho), float(p_value)


def screen_correlations(
    expression_matrix: pd.DataFrame,
    series_of_reference_values: pd.Series,
    name_of_reference: str,
    list_of_candidate_genes: list[str] | None = None,
    maximum_rho: float = -0.20,
    maximum_FDR: float = 0.01
) -> tuple[pd.DataFrame, pd.DataFrame]:
    '''
    Screen genes by Spearman correlation with a reference.

    Parameters
    ----------
    expression_matrix: pd.DataFrame -- matrix with genes as index and sample IDs as columns
    series_of_reference_values: pd.Series -- reference values indexed by sample ID
    name_of_reference: str -- prefix of columns of the returned tables
    list_of_candidate_genes: list[str] | None -- genes to test; all genes of the expression matrix if None

    Returns
    -------
    a tuple of an unfiltered data frame of all genes with defined correlations and
    a filtered data frame of genes that pass, both indexed by gene
    '''
    index_of_common_samples = expression_matrix.columns.intersection(series_of_reference_values.index, sort = False)
    if len(index_of_common_samples) < MINIMUM_NUMBER_OF_PAIRED_SAMPLES:
        raise ValueError(
            f"Expression matrix and reference {name_of_reference} share {len(index_of_common_samples)} samples; "
            f"at least {MINIMUM_NUMBER_OF_PAIRED_SAMPLES} are required."
        )
    if list_of_candidate_genes is None:
        list_of_candidate_genes = expression_matrix.index.tolist()
    list_of_candidate_genes = [gene for gene in list_of_candidate_genes if gene in expression_matrix.index]

    logger.info(
        f"Correlations of {len(list_of_candidate_genes)} genes with reference {name_of_reference} "
        f"will be computed over {len(index_of_common_samples)} samples."
    )

    series_of_reference_values = series_of_reference_values.loc[index_of_common_samples]
    list_of_rows = []
    for gene in list_of_candidate_genes:
        rho, p_value = compute_spearman_correlation(
            expression_matrix.loc[gene, index_of_common_samples],
            series_of_reference_values
        )
        list_of_rows.append((gene, rho, p_value))
    unfiltered_data_frame = pd.DataFrame(
        list_of_rows,
        columns = ["gene", f"{name_of_reference}_rho", f"{name_of_reference}_p_value"]
    ).set_index("gene")
    series_of_indicators_of_undefined_correlations = unfiltered_data_frame[f"{name_of_reference}_p_value"].isna()
    if series_of_indicators_of_undefined_correlations.any():
        logger.info(
            f"{series_of_indicators_of_undefined_correlations.sum()} genes have undefined correlations with reference "
            f"{name_of_reference} and will not be tested."
        )
    unfiltered_data_frame = unfiltered_data_frame.loc[~series_of_indicators_of_undefined_correlations].copy()
    unfiltered_data_frame[f"{name_of_reference}_FDR"] = bh_fdr(unfiltered_data_frame[f"{name_of_reference}_p_value"])
    filtered_data_frame = unfiltered_data_frame.loc[
        (unfiltered_data_frame[f"{name_of_reference}_rho"] <= maximum_rho) &
        (unfiltered_data_frame[f"{name_of_reference}_FDR"] < maximum_FDR)
    ]

    logger.info(
        f"{len(filtered_data_frame)} of {len(unfiltered_data_frame)} genes have rho at most {maximum_rho} "
        f"and FDR less than {maximum_FDR} with reference {name_of_reference}."
    )

    return unfiltered_data_frame, filtered_data_frame
