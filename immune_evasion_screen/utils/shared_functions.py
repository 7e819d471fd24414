'''
Shared Functions Module
Functions for multiple testing correction, saving results, and auditing stages of the screening funnel
'''

from pathlib import Path
import logging
import os

import pandas as pd
from statsmodels.stats.multitest import multipletests


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


def bh_fdr(pvals: pd.Series) -> pd.Series:
    '''
    Provide a series of False Discovery Rates based on a series of p values.
    p values must be defined; an empty series yields an empty series.
    '''
    if pvals.isna().any():
        raise ValueError("p values of NA cannot be adjusted with the Benjamini-Hochberg procedure.")
    if pvals.empty:
        return pd.Series(dtype = float, index = pvals.index)
    _, q, _, _ = multipletests(pvals.to_numpy(dtype = float), method = "fdr_bh")
    return pd.Series(q, index = pvals.index)


def check_required_columns(data_frame: pd.DataFrame, list_of_required_columns: list[str], name_of_table: str) -> None:
    list_of_missing_columns = [column for column in list_of_required_columns if column not in data_frame.columns]
    if list_of_missing_columns:
        raise ValueError(f"Table {name_of_table} is missing required columns {list_of_missing_columns}.")


def save_results(df: pd.DataFrame, path: str | Path, index: bool = True) -> None:
    '''
    Save results to a CSV file, creating the parent directory if necessary.
    '''
    os.makedirs(Path(path).parent, exist_ok = True)
    df.to_csv(path, index = index)
    logger.info(f"Data frame with shape {df.shape} was saved to {path}.")


class AuditTrail:
    '''
    Class AuditTrail is a template for an object that records, for every stage of the screening funnel,
    the number of genes entering the stage, the number of genes leaving the stage, and the genes that survived.
    '''

    def __init__(self, cohort_name: str):
        self.cohort_name = cohort_name
        self.list_of_records = []


    def record(self, stage: str, number_of_genes_before: int, list_of_surviving_genes) -> None:
        list_of_surviving_genes = list(list_of_surviving_genes)
        self.list_of_records.append(
            {
                "cohort": self.cohort_name,
                "stage": stage,
                "number_of_genes_before": number_of_genes_before,
                "number_of_genes_after": len(list_of_surviving_genes),
                "surviving_genes": ";".join(str(gene) for gene in list_of_surviving_genes)
            }
        )
        logger.info(
            "[%s] Stage %s kept %d of %d genes.",
            self.cohort_name,
            stage,
            len(list_of_surviving_genes),
            number_of_genes_before
        )


    def create_data_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.list_of_records,
            columns = ["cohort", "stage", "number_of_genes_before", "number_of_genes_after", "surviving_genes"]
        )


    def save(self, path: str | Path) -> None:
        save_results(self.create_data_frame(), path, index = False)
