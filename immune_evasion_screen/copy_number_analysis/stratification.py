'''
`stratification.py` partitions, for every gene, samples into
- Group A (inactivated): samples with GISTIC2 score at most 0 whose expression of the gene is in the bottom 30 percent and
- Group B (activated): samples with GISTIC2 score at least 1 whose expression of the gene is in the top 30 percent.

Samples are ranked by expression for each gene with average ranks for ties.
Samples with missing expression values are neither ranked nor assigned to a group,
and N is the number of ranked samples.
A sample is in the bottom 30 percent if its rank is at most 0.3 N
and in the top 30 percent if its rank is greater than 0.7 N.
The bottom edge is inclusive and the top edge is exclusive.

Genes for which either group has fewer than a minimum number of samples
or either group contains an undefined sample ID are discarded.
'''

from typing import NamedTuple
import logging

import pandas as pd

from immune_evasion_screen.data_processing.normalization import align_matrices


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


class GroupsOfSamples(NamedTuple):
    inactivated: frozenset
    activated: frozenset


def create_dictionary_of_indicators_of_partitions(
    copy_number_matrix: pd.DataFrame,
    expression_matrix: pd.DataFrame,
    bottom_fraction: float = 0.3,
    top_fraction: float = 0.7
) -> dict[str, pd.DataFrame]:
    '''
    Provide boolean matrices of genes and samples indicating
    low copy number, high copy number, bottom ranks of expression, and top ranks of expression.
    Matrices must share genes and samples.
    '''
    data_frame_of_ranks = expression_matrix.rank(axis = 1, method = "average", na_option = "keep")
    series_of_numbers_of_ranked_samples = expression_matrix.notna().sum(axis = 1)
    return {
        "copy_number_low": copy_number_matrix <= 0,
        "copy_number_high": copy_number_matrix >= 1,
        "bottom_ranked": data_frame_of_ranks.le(series_of_numbers_of_ranked_samples * bottom_fraction, axis = 0),
        "top_ranked": data_frame_of_ranks.gt(series_of_numbers_of_ranked_samples * top_fraction, axis = 0)
    }


def create_data_frame_of_candidate_partitions(
    copy_number_matrix: pd.DataFrame,
    expression_matrix: pd.DataFrame,
    bottom_fraction: float = 0.3,
    top_fraction: float = 0.7
) -> pd.DataFrame:
    '''
    Provide a data frame with one row per gene of the sizes of the four partitions and the two groups,
    regardless of the minimum group size. Useful for auditing which genes fail which partition.
    '''
    copy_number_matrix, expression_matrix = align_matrices(copy_number_matrix, expression_matrix)
    dictionary_of_indicators = create_dictionary_of_indicators_of_partitions(
        copy_number_matrix,
        expression_matrix,
        bottom_fraction,
        top_fraction
    )
    data_frame_of_sizes = pd.DataFrame(
        {
            name_of_partition: data_frame_of_indicators.sum(axis = 1)
            for name_of_partition, data_frame_of_indicators in dictionary_of_indicators.items()
        }
    )
    data_frame_of_sizes["inactivated"] = (
        dictionary_of_indicators["copy_number_low"] & dictionary_of_indicators["bottom_ranked"]
    ).sum(axis = 1)
    data_frame_of_sizes["activated"] = (
        dictionary_of_indicators["copy_number_high"] & dictionary_of_indicators["top_ranked"]
    ).sum(axis = 1)
    data_frame_of_sizes.index.name = "gene"
    return data_frame_of_sizes


def stratify_genes(
    copy_number_matrix: pd.DataFrame,
    expression_matrix: pd.DataFrame,
    minimum_group_size: int = 30,
    bottom_fraction: float = 0.3,
    top_fraction: float = 0.7
) -> dict[str, GroupsOfSamples]:
    '''
    Provide a dictionary of genes and groups of samples for genes whose groups both have at least `minimum_group_size` samples.
    '''
    copy_number_matrix, expression_matrix = align_matrices(copy_number_matrix, expression_matrix)

    logger.info(f"Samples will be stratified for {expression_matrix.shape[0]} genes and {expression_matrix.shape[1]} samples.")

    dictionary_of_indicators = create_dictionary_of_indicators_of_partitions(
        copy_number_matrix,
        expression_matrix,
        bottom_fraction,
        top_fraction
    )
    data_frame_of_indicators_of_inactivation = (
        dictionary_of_indicators["copy_number_low"] & dictionary_of_indicators["bottom_ranked"]
    )
    data_frame_of_indicators_of_activation = (
        dictionary_of_indicators["copy_number_high"] & dictionary_of_indicators["top_ranked"]
    )
    index_of_samples = expression_matrix.columns
    dictionary_of_genes_and_groups = {}
    number_of_genes_with_small_groups = 0
    number_of_genes_with_undefined_samples = 0
    for gene in expression_matrix.index:
        index_of_inactivated_samples = index_of_samples[data_frame_of_indicators_of_inactivation.loc[gene].to_numpy(dtype = bool)]
        index_of_activated_samples = index_of_samples[data_frame_of_indicators_of_activation.loc[gene].to_numpy(dtype = bool)]
        if len(index_of_inactivated_samples) < minimum_group_size or len(index_of_activated_samples) < minimum_group_size:
            number_of_genes_with_small_groups += 1
            continue
        if index_of_inactivated_samples.isna().any() or index_of_activated_samples.isna().any():
            number_of_genes_with_undefined_samples += 1
            continue
        dictionary_of_genes_and_groups[gene] = GroupsOfSamples(
            inactivated = frozenset(index_of_inactivated_samples),
            activated = frozenset(index_of_activated_samples)
        )

    logger.info(
        f"{len(dictionary_of_genes_and_groups)} genes were stratified; "
        f"{number_of_genes_with_small_groups} genes had a group with fewer than {minimum_group_size} samples and "
        f"{number_of_genes_with_undefined_samples} genes had a group with an undefined sample ID."
    )

    return dictionary_of_genes_and_groups


def create_data_frame_of_genes_and_groups(dictionary_of_genes_and_groups: dict[str, GroupsOfSamples]) -> pd.DataFrame:
    '''
    Provide a long data frame with columns gene, group, and sample_ID.
    '''
    list_of_rows = []
    for gene, groups in dictionary_of_genes_and_groups.items():
        for name_of_group, set_of_samples in groups._asdict().items():
            for sample_ID in sorted(set_of_samples):
                list_of_rows.append((gene, name_of_group, sample_ID))
    return pd.DataFrame(list_of_rows, columns = ["gene", "group", "sample_ID"])
