'''
`gene_list_merging.py` merges the filtered tables of the screens into one table of genes that pass every screen.
'''

from functools import reduce
import logging

import pandas as pd


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


def merge_gene_lists(list_of_tables: list[pd.DataFrame]) -> pd.DataFrame:
    '''
    Inner join tables indexed by gene.

    The index of the merged table is the intersection of the indices of the tables,
    in the order of the first table, and columns follow the order of the tables.
    Columns must be unique across tables.
    '''
    if not list_of_tables:
        raise ValueError("At least one table is required to merge gene lists.")
    list_of_columns = [column for table in list_of_tables for column in table.columns]
    list_of_duplicated_columns = sorted({column for column in list_of_columns if list_of_columns.count(column) > 1})
    if list_of_duplicated_columns:
        raise ValueError(f"Tables to merge share columns {list_of_duplicated_columns}; columns must be namespaced by screen.")

    logger.info(f"{len(list_of_tables)} tables with {[len(table) for table in list_of_tables]} genes will be merged.")

    merged_table = reduce(
        lambda left_table, right_table: left_table.join(right_table, how = "inner"),
        list_of_tables[1:],
        list_of_tables[0].copy()
    )
    merged_table.index.name = "gene"

    logger.info(f"{len(merged_table)} genes passed every screen.")

    return merged_table
