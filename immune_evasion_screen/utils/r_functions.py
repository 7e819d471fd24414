'''
`r_functions.py` bridges the screening funnel to R packages through rpy2.

- GSVA computes single-sample GSEA scores of an immune signature.
- survminer finds optimal cutpoints of expression by maximally selected rank statistics.
- DESeq2 fits differential expression of activated vs. inactivated samples.
- clusterProfiler runs gene set enrichment analysis against Gene Ontology with org.Hs.eg.db.

Each function accepts and returns pandas objects so that the funnel never handles R objects.
'''

import logging

import numpy as np
import pandas as pd
from rpy2 import robjects as ro
from rpy2.robjects import pandas2ri
from rpy2.robjects import vectors
from rpy2.robjects.conversion import localconverter
from rpy2.robjects.packages import importr


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


def _convert_data_frame_to_r(data_frame: pd.DataFrame):
    with localconverter(ro.default_converter + pandas2ri.converter):
        return ro.conversion.py2rpy(data_frame)


def _convert_data_frame_from_r(r_data_frame) -> pd.DataFrame:
    with localconverter(ro.default_converter + pandas2ri.converter):
        return ro.conversion.rpy2py(r_data_frame)


def _create_named_vector(series: pd.Series):
    named_vector = vectors.FloatVector(series.to_numpy(dtype = float))
    named_vector.names = vectors.StrVector([str(key) for key in series.index])
    return named_vector


def compute_ssGSEA_scores(expression_matrix: pd.DataFrame, list_of_genes: list[str]) -> pd.Series:
    '''
    Provide a series of ssGSEA scores of a set of genes indexed by sample ID.
    '''
    importr("GSVA")
    compute_scores = ro.r(
        '''function(data_frame_of_expression_values, vector_of_genes) {
    matrix_of_expression_values <- as.matrix(data_frame_of_expression_values)
    list_of_sets_of_genes <- list(signature = vector_of_genes)
    parameters <- GSVA::ssgseaParam(matrix_of_expression_values, list_of_sets_of_genes)
    matrix_of_scores <- GSVA::gsva(parameters, verbose = FALSE)
    data.frame(
        sample_ID = colnames(matrix_of_scores),
        score = as.numeric(matrix_of_scores["signature", ]),
        stringsAsFactors = FALSE
    )
}'''
    )

    logger.info(f"ssGSEA scores of {len(list_of_genes)} genes will be computed for {expression_matrix.shape[1]} samples.")

    r_data_frame_of_scores = compute_scores(
        _convert_data_frame_to_r(expression_matrix.astype(float)),
        vectors.StrVector(list_of_genes)
    )
    data_frame_of_scores = _convert_data_frame_from_r(r_data_frame_of_scores)
    series_of_scores = pd.Series(
        data_frame_of_scores["score"].to_numpy(dtype = float),
        index = expression_matrix.columns,
        name = "ssGSEA_score"
    )
    # R may rewrite column names, so scores are keyed by position.
    return series_of_scores


def find_cutpoint_with_survminer(
    data_frame_of_times_events_and_expression_values: pd.DataFrame,
    minimum_proportion: float = 0.1
) -> float | None:
    '''
    Provide the cutpoint of expression found by survminer::surv_cutpoint, or None if survminer finds no cutpoint.
    '''
    importr("survminer")
    find_cutpoint = ro.r(
        '''function(data_frame, minimum_proportion) {
    tryCatch(
        {
            cutpoint <- survminer::surv_cutpoint(
                data_frame,
                time = "time",
                event = "event",
                variables = "expression",
                minprop = minimum_proportion
            )
            as.numeric(cutpoint$cutpoint$cutpoint[1])
        },
        error = function(error) NA_real_
    )
}'''
    )
    r_cutpoint = find_cutpoint(
        _convert_data_frame_to_r(
            data_frame_of_times_events_and_expression_values[["time", "event", "expression"]]
            .astype(float)
            .reset_index(drop = True)
        ),
        minimum_proportion
    )
    cutpoint = float(r_cutpoint[0])
    if not np.isfinite(cutpoint):
        return None
    return cutpoint


def fit_DESeq2(counts_matrix: pd.DataFrame, series_of_groups: pd.Series) -> pd.Series:
    '''
    Fit differential expression of activated vs. inactivated samples with inactivated samples as reference.

    Parameters
    ----------
    counts_matrix: pd.DataFrame -- matrix of raw counts with genes as index and sample IDs as columns
    series_of_groups: pd.Series -- "inactivated" or "activated" indexed by sample ID

    Returns
    -------
    a series of log2 fold changes indexed by gene
    '''
    importr("DESeq2")
    fit_differential_expression = ro.r(
        '''function(data_frame_of_counts, vector_of_groups) {
    matrix_of_counts <- round(as.matrix(data_frame_of_counts))
    storage.mode(matrix_of_counts) <- "integer"
    data_frame_of_samples <- data.frame(
        group = factor(vector_of_groups, levels = c("inactivated", "activated")),
        row.names = colnames(matrix_of_counts)
    )
    data_set <- DESeq2::DESeqDataSetFromMatrix(
        countData = matrix_of_counts,
        colData = data_frame_of_samples,
        design = ~ group
    )
    data_set <- DESeq2::DESeq(data_set, quiet = TRUE)
    results <- DESeq2::results(data_set, contrast = c("group", "activated", "inactivated"))
    data.frame(
        gene = rownames(results),
        log2FoldChange = as.numeric(results$log2FoldChange),
        stringsAsFactors = FALSE
    )
}'''
    )
    series_of_groups = series_of_groups.loc[counts_matrix.columns]
    r_data_frame_of_log2_fold_changes = fit_differential_expression(
        _convert_data_frame_to_r(counts_matrix.astype(float)),
        vectors.StrVector(series_of_groups.astype(str).tolist())
    )
    data_frame_of_log2_fold_changes = _convert_data_frame_from_r(r_data_frame_of_log2_fold_changes)
    return pd.Series(
        data_frame_of_log2_fold_changes["log2FoldChange"].to_numpy(dtype = float),
        index = counts_matrix.index,
        name = "log2FoldChange"
    )


def run_gseGO(series_of_ranked_log2_fold_changes: pd.Series, namespace: str) -> pd.DataFrame:
    '''
    Run gene set enrichment analysis of ranked log2 fold changes against Gene Ontology terms of a namespace.

    Returns
    -------
    a data frame with one row per term and columns including Description, pvalue, and p.adjust
    '''
    importr("clusterProfiler")
    run_gene_set_enrichment_analysis = ro.r(
        '''function(named_vector_of_log2_fold_changes, namespace) {
    suppressPackageStartupMessages(library(org.Hs.eg.db))
    result <- clusterProfiler::gseGO(
        geneList = named_vector_of_log2_fold_changes,
        OrgDb = org.Hs.eg.db,
        keyType = "SYMBOL",
        ont = namespace,
        pvalueCutoff = 1,
        verbose = FALSE,
        seed = TRUE
    )
    data_frame <- as.data.frame(result)
    if (nrow(data_frame) == 0) {
        return(data.frame(ID = character(0), Description = character(0), pvalue = numeric(0), p.adjust = numeric(0)))
    }
    data_frame[, c("ID", "Description", "pvalue", "p.adjust")]
}'''
    )
    ro.r("set.seed(0)")
    r_data_frame_of_terms = run_gene_set_enrichment_analysis(
        _create_named_vector(series_of_ranked_log2_fold_changes),
        namespace
    )
    data_frame_of_terms = _convert_data_frame_from_r(r_data_frame_of_terms)
    return data_frame_of_terms.reset_index(drop = True)
