'''
`pathway_annotation.py` annotates each gene that passed every screen with counts of immune and antigen presentation pathways.

For each gene:
1. Restrict a matrix of raw counts to the samples of Group A (inactivated) and Group B (activated) of the gene.
2. Fit differential expression of Group B vs. Group A with Group A as reference.
3. Rank genes by log2 fold change in decreasing order.
4. Run gene set enrichment analysis of the ranked log2 fold changes against Gene Ontology terms
   of namespaces Biological Process, Cellular Component, and Molecular Function.
5. Keep terms with p value less than 0.05 and adjusted p value less than 0.25.
6. Count terms whose descriptions mention cytokines, interferons, interleukins, or chemokines
   and terms whose descriptions mention antigens or MHC, and sum counts across namespaces.

Genes are annotated by a pool of workers. Each worker receives the counts matrix, groups, and functions once
through the pool initializer; tasks are genes. An error while annotating one gene is logged with the gene
and the gene is excluded.
'''

from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from typing import Callable
import logging
import re

import pandas as pd

from immune_evasion_screen.config import LIST_OF_GENE_ONTOLOGY_NAMESPACES
from immune_evasion_screen.copy_number_analysis.stratification import GroupsOfSamples


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


PATTERN_OF_IMMUNE_TERMS = re.compile(r"cytokine|interferon|interleukin|chemokine", re.IGNORECASE)
PATTERN_OF_EXCLUDED_TERMS = re.compile(r"cytokinesis|cytokinetic", re.IGNORECASE)
PATTERN_OF_ANTIGEN_TERMS = re.compile(r"antigen|MHC|major histocompatibility", re.IGNORECASE)

# Shared inputs of workers, set by `_initialize_worker`.
_counts_matrix = None
_dictionary_of_genes_and_groups = None
_fit_differential_expression = None
_run_gene_set_enrichment = None
_dictionary_of_parameters = None


def count_immune_and_antigen_terms(
    data_frame_of_terms: pd.DataFrame,
    maximum_p_value: float = 0.05,
    maximum_adjusted_p_value: float = 0.25
) -> tuple[int, int]:
    '''
    Count significant terms of a table of enrichment results with columns Description, pvalue, and p.adjust
    whose descriptions match the immune pattern and the antigen pattern.
    '''
    if data_frame_of_terms.empty:
        return 0, 0
    data_frame_of_significant_terms = data_frame_of_terms.loc[
        (data_frame_of_terms["pvalue"] < maximum_p_value) &
        (data_frame_of_terms["p.adjust"] < maximum_adjusted_p_value)
    ]
    series_of_descriptions = data_frame_of_significant_terms["Description"].astype(str)
    number_of_immune_terms = sum(
        1
        for description in series_of_descriptions
        if PATTERN_OF_IMMUNE_TERMS.search(description) and not PATTERN_OF_EXCLUDED_TERMS.search(description)
    )
    number_of_antigen_terms = sum(1 for description in series_of_descriptions if PATTERN_OF_ANTIGEN_TERMS.search(description))
    return number_of_immune_terms, number_of_antigen_terms


def annotate_gene(
    gene: str,
    counts_matrix: pd.DataFrame,
    groups: GroupsOfSamples,
    fit_differential_expression: Callable[[pd.DataFrame, pd.Series], pd.Series],
    run_gene_set_enrichment: Callable[[pd.Series, str], pd.DataFrame],
    maximum_p_value: float = 0.05,
    maximum_adjusted_p_value: float = 0.25
) -> tuple[int, int]:
    '''
    Provide numbers of immune terms and antigen terms for one gene.
    '''
    list_of_inactivated_samples = [sample_ID for sample_ID in counts_matrix.columns if sample_ID in groups.inactivated]
    list_of_activated_samples = [sample_ID for sample_ID in counts_matrix.columns if sample_ID in groups.activated]
    if not list_of_inactivated_samples or not list_of_activated_samples:
        raise ValueError(
            f"Counts matrix has {len(list_of_inactivated_samples)} inactivated samples and "
            f"{len(list_of_activated_samples)} activated samples of gene {gene}."
        )
    series_of_groups = pd.Series(
        ["inactivated"] * len(list_of_inactivated_samples) + ["activated"] * len(list_of_activated_samples),
        index = list_of_inactivated_samples + list_of_activated_samples
    )
    series_of_log2_fold_changes = fit_differential_expression(counts_matrix[series_of_groups.index], series_of_groups)
    series_of_ranked_log2_fold_changes = series_of_log2_fold_changes.dropna().sort_values(ascending = False, kind = "mergesort")
    number_of_immune_terms = 0
    number_of_antigen_terms = 0
    for namespace in LIST_OF_GENE_ONTOLOGY_NAMESPACES:
        data_frame_of_terms = run_gene_set_enrichment(series_of_ranked_log2_fold_changes, namespace)
        number_of_immune_terms_in_namespace, number_of_antigen_terms_in_namespace = count_immune_and_antigen_terms(
            data_frame_of_terms,
            maximum_p_value,
            maximum_adjusted_p_value
        )
        number_of_immune_terms += number_of_immune_terms_in_namespace
        number_of_antigen_terms += number_of_antigen_terms_in_namespace
    return number_of_immune_terms, number_of_antigen_terms


def _initialize_worker(
    counts_matrix,
    dictionary_of_genes_and_groups,
    fit_differential_expression,
    run_gene_set_enrichment,
    dictionary_of_parameters
):
    global _counts_matrix, _dictionary_of_genes_and_groups, _fit_differential_expression, _run_gene_set_enrichment, _dictionary_of_parameters
    _counts_matrix = counts_matrix
    _dictionary_of_genes_and_groups = dictionary_of_genes_and_groups
    _fit_differential_expression = fit_differential_expression
    _run_gene_set_enrichment = run_gene_set_enrichment
    _dictionary_of_parameters = dictionary_of_parameters


def _annotate_gene_in_worker(gene: str) -> tuple[int, int]:
    return annotate_gene(
        gene,
        _counts_matrix,
        _dictionary_of_genes_and_groups[gene],
        _fit_differential_expression,
        _run_gene_set_enrichment,
        **_dictionary_of_parameters
    )


def annotate_pathways(
    list_of_genes: list[str],
    counts_matrix: pd.DataFrame,
    dictionary_of_genes_and_groups: dict[str, GroupsOfSamples],
    fit_differential_expression: Callable[[pd.DataFrame, pd.Series], pd.Series],
    run_gene_set_enrichment: Callable[[pd.Series, str], pd.DataFrame],
    number_of_workers: int = 4,
    kind_of_pool: str = "processes",
    maximum_p_value: float = 0.05,
    maximum_adjusted_p_value: float = 0.25
) -> pd.DataFrame:
    '''
    Annotate genes with numbers of immune terms and antigen terms.

    Parameters
    ----------
    list_of_genes: list[str] -- genes to annotate; every gene must have groups
    counts_matrix: pd.DataFrame -- matrix of raw counts with genes as index and sample IDs as columns
    dictionary_of_genes_and_groups: dict[str, GroupsOfSamples] -- groups of samples provided by the stratifier
    fit_differential_expression: callable -- maps counts and a series of groups to a series of log2 fold changes
    run_gene_set_enrichment: callable -- maps ranked log2 fold changes and a namespace to a table of terms
    number_of_workers: int -- size of pool; 1 annotates genes in this process
    kind_of_pool: str -- "processes" or "threads"

    Returns
    -------
    a data frame indexed by gene with columns number_of_immune_terms and number_of_antigen_terms,
    in the order of `list_of_genes`
    '''
    if kind_of_pool not in ("processes", "threads"):
        raise ValueError(f"Kind of pool must be processes or threads, not {kind_of_pool}.")
    if number_of_workers < 1:
        raise ValueError(f"Number of workers must be at least 1, not {number_of_workers}.")
    list_of_genes_without_groups = [gene for gene in list_of_genes if gene not in dictionary_of_genes_and_groups]
    if list_of_genes_without_groups:
        raise ValueError(f"Genes {list_of_genes_without_groups} have no groups of samples.")

    logger.info(f"Pathways will be annotated for {len(list_of_genes)} genes by {number_of_workers} workers ({kind_of_pool}).")

    dictionary_of_parameters = {
        "maximum_p_value": maximum_p_value,
        "maximum_adjusted_p_value": maximum_adjusted_p_value
    }
    dictionary_of_genes_and_results = {}
    if number_of_workers == 1 or len(list_of_genes) <= 1:
        for gene in list_of_genes:
            try:
                dictionary_of_genes_and_results[gene] = annotate_gene(
                    gene,
                    counts_matrix,
                    dictionary_of_genes_and_groups[gene],
                    fit_differential_expression,
                    run_gene_set_enrichment,
                    **dictionary_of_parameters
                )
            except Exception:
                logger.exception(f"Pathways of gene {gene} could not be annotated and gene {gene} will be excluded.")
    else:
        class_of_executor = ProcessPoolExecutor if kind_of_pool == "processes" else ThreadPoolExecutor
        with class_of_executor(
            max_workers = number_of_workers,
            initializer = _initialize_worker,
            initargs = (
                counts_matrix,
                {gene: dictionary_of_genes_and_groups[gene] for gene in list_of_genes},
                fit_differential_expression,
                run_gene_set_enrichment,
                dictionary_of_parameters
            )
        ) as executor:
            dictionary_of_futures_and_genes = {
                executor.submit(_annotate_gene_in_worker, gene): gene
                for gene in list_of_genes
            }
            for future in as_completed(dictionary_of_futures_and_genes):
                gene = dictionary_of_futures_and_genes[future]
                try:
                    dictionary_of_genes_and_results[gene] = future.result()
                except Exception:
                    logger.exception(f"Pathways of gene {gene} could not be annotated and gene {gene} will be excluded.")
    data_frame_of_numbers_of_terms = pd.DataFrame(
        [
            (gene, *dictionary_of_genes_and_results[gene])
            for gene in list_of_genes
            if gene in dictionary_of_genes_and_results
        ],
        columns = ["gene", "number_of_immune_terms", "number_of_antigen_terms"]
    ).set_index("gene")

    logger.info(f"Pathways were annotated for {len(data_frame_of_numbers_of_terms)} of {len(list_of_genes)} genes.")

    return data_frame_of_numbers_of_terms
