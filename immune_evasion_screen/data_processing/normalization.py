'''
`normalization.py` turns a raw matrix of genes and samples into a matrix with unique gene symbols,
unique sample IDs, and samples of a single sample type.

A TCGA barcode like TCGA-A1-A0SB-01A-11R-A144-07 encodes
- a patient ID in its first 12 characters (TCGA-A1-A0SB),
- a sample ID in its first 15 characters (TCGA-A1-A0SB-01), and
- a sample-type code in characters 14 and 15 (01).
Characters after the 15th identify vials, portions, analytes, plates, and centers,
which distinguish technical replicates of the same sample.
'''

import logging

import numpy as np
import pandas as pd


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


LENGTH_OF_PATIENT_ID = 12
LENGTH_OF_SAMPLE_ID = 15
START_OF_SAMPLE_TYPE_CODE = 13


def truncate_sample_ID(barcode: str) -> str:
    return str(barcode)[:LENGTH_OF_SAMPLE_ID]


def get_sample_type_code(barcode: str) -> str:
    return str(barcode)[START_OF_SAMPLE_TYPE_CODE:LENGTH_OF_SAMPLE_ID]


def get_patient_ID(barcode: str) -> str:
    return str(barcode)[:LENGTH_OF_PATIENT_ID]


def collapse_duplicate_genes(matrix: pd.DataFrame) -> pd.DataFrame:
    '''
    Keep for each gene symbol the row with the largest mean across samples.
    Rows are sorted by decreasing mean with a stable sort, so among rows with equal means
    the row that appears first in the provided matrix is kept.
    Kept rows are returned in the order in which their gene symbols first appear in the provided matrix.
    '''
    series_of_means = matrix.mean(axis = 1)
    array_of_positions = np.argsort(-series_of_means.to_numpy(), kind = "stable")
    sorted_matrix = matrix.iloc[array_of_positions]
    deduplicated_matrix = sorted_matrix.loc[~sorted_matrix.index.duplicated(keep = "first")]
    index_of_genes_in_order_of_first_appearance = matrix.index[~matrix.index.duplicated(keep = "first")]
    return deduplicated_matrix.loc[index_of_genes_in_order_of_first_appearance]


def collapse_duplicate_samples(matrix: pd.DataFrame) -> pd.DataFrame:
    '''
    Truncate barcodes to sample IDs and keep the first encountered column for each sample ID.
    '''
    truncated_matrix = matrix.copy()
    truncated_matrix.columns = [truncate_sample_ID(barcode) for barcode in matrix.columns]
    return truncated_matrix.loc[:, ~truncated_matrix.columns.duplicated(keep = "first")]


def normalize_matrix(matrix: pd.DataFrame, minimum_mean: float, sample_type_code: str) -> pd.DataFrame:
    '''
    Provide a matrix with unique gene symbols, unique sample IDs,
    and only samples with the provided sample-type code.

    Parameters
    ----------
    matrix: pd.DataFrame -- matrix with gene symbols as index and barcodes as columns
    minimum_mean: float -- rows with mean across samples below this value are dropped;
        means include samples of every type, since genes are filtered before samples
    sample_type_code: str -- e.g., "01" for primary solid tumors or "06" for metastases

    Raises
    ------
    ValueError if no genes or no samples remain
    '''

    logger.info(f"Matrix with shape {matrix.shape} will be normalized.")

    matrix = matrix.apply(pd.to_numeric, errors = "coerce")
    series_of_means = matrix.mean(axis = 1)
    matrix = matrix.loc[(series_of_means >= minimum_mean).to_numpy()]

    logger.info(f"{matrix.shape[0]} genes have mean at least {minimum_mean}.")

    matrix = collapse_duplicate_genes(matrix)

    logger.info(f"{matrix.shape[0]} genes remain after collapsing duplicate gene symbols.")

    matrix = collapse_duplicate_samples(matrix)

    logger.info(f"{matrix.shape[1]} samples remain after collapsing technical replicates.")

    array_of_indicators_of_sample_type = np.array(
        [get_sample_type_code(sample_ID) == sample_type_code for sample_ID in matrix.columns],
        dtype = bool
    )
    matrix = matrix.loc[:, array_of_indicators_of_sample_type]

    logger.info(f"{matrix.shape[1]} samples have sample-type code {sample_type_code}.")

    if matrix.shape[0] == 0:
        raise ValueError(f"No genes remain after normalizing matrix with minimum mean {minimum_mean}.")
    if matrix.shape[1] == 0:
        raise ValueError(f"No samples with sample-type code {sample_type_code} remain after normalizing matrix.")
    return matrix


def normalize_copy_number_matrix(matrix: pd.DataFrame, sample_type_code: str) -> pd.DataFrame:
    '''
    Provide a matrix of GISTIC2 scores with unique gene symbols, unique sample IDs,
    and only samples with the provided sample-type code.
    The first row of each duplicated gene symbol is kept.
    '''

    logger.info(f"Copy number matrix with shape {matrix.shape} will be normalized.")

    matrix = matrix.apply(pd.to_numeric, errors = "coerce")
    matrix = matrix.loc[~matrix.index.duplicated(keep = "first")]
    matrix = collapse_duplicate_samples(matrix)
    array_of_indicators_of_sample_type = np.array(
        [get_sample_type_code(sample_ID) == sample_type_code for sample_ID in matrix.columns],
        dtype = bool
    )
    matrix = matrix.loc[:, array_of_indicators_of_sample_type]
    if matrix.shape[0] == 0 or matrix.shape[1] == 0:
        raise ValueError(f"Copy number matrix has shape {matrix.shape} after normalization.")

    logger.info(f"Copy number matrix has shape {matrix.shape} after normalization.")

    return matrix


def align_matrices(*matrices: pd.DataFrame) -> tuple[pd.DataFrame, ...]:
    '''
    Restrict matrices to the genes and samples they share.
    Order of genes and samples follows the first matrix.
    '''
    index_of_common_genes = matrices[0].index
    index_of_common_samples = matrices[0].columns
    for matrix in matrices[1:]:
        index_of_common_genes = index_of_common_genes.intersection(matrix.index, sort = False)
        index_of_common_samples = index_of_common_samples.intersection(matrix.columns, sort = False)
    if len(index_of_common_genes) == 0 or len(index_of_common_samples) == 0:
        raise ValueError(
            f"Matrices share {len(index_of_common_genes)} genes and {len(index_of_common_samples)} samples; both must be positive."
        )

    logger.info(f"Matrices share {len(index_of_common_genes)} genes and {len(index_of_common_samples)} samples.")

    return tuple(matrix.loc[index_of_common_genes, index_of_common_samples] for matrix in matrices)
