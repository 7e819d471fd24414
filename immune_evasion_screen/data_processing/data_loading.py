'''
Load the tables consumed by the screening funnel.

- matrices of genes (or cell types) and samples (tab or comma delimited, row keys in the first column)
- clinical data with patient IDs, times to death or last follow-up, vital statuses, ages, and sexes
- a flat list of symbols of genes of an immune signature
- a table of genes, coefficients, and p values of multivariate Cox models
'''

from pathlib import Path
import logging

import numpy as np
import pandas as pd

from immune_evasion_screen.data_processing.normalization import collapse_duplicate_samples, get_patient_ID
from immune_evasion_screen.utils.shared_functions import check_required_columns


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


LIST_OF_NAMES_OF_ANNOTATION_COLUMNS = ["Locus ID", "Cytoband", "gene_id", "Gene ID", "gene_type", "Entrez_Gene_Id"]

MAP_OF_VITAL_STATUSES_TO_EVENTS = {
    "dead": 1,
    "deceased": 1,
    "1": 1,
    "1.0": 1,
    "alive": 0,
    "living": 0,
    "0": 0,
    "0.0": 0
}

MAP_OF_SEXES_TO_INDICATORS = {
    "female": 0,
    "f": 0,
    "male": 1,
    "m": 1
}

PATIENT_COL_CANDIDATES: list[str] = ["bcr_patient_barcode", "_PATIENT", "PATIENT_ID", "patient_id", "sample"]
GENE_COL_CANDIDATES: list[str] = ["gene", "Gene", "gene_symbol", "symbol"]
P_VALUE_COL_CANDIDATES: list[str] = ["p_value", "p", "pvalue", "Pr(>|z|)"]
TIME_COL_CANDIDATES: list[str] = ["OS.time", "OS_time", "os_time", "overall_survival_time"]
EVENT_COL_CANDIDATES: list[str] = ["OS", "OS_event", "os_event", "overall_survival_event"]
VITAL_STATUS_COL_CANDIDATES: list[str] = ["vital_status", "VITAL_STATUS", "vital_status.demographic", "VitalStatus"]
DAYS_TO_DEATH_COL_CANDIDATES: list[str] = ["days_to_death", "DAYS_TO_DEATH", "days_to_death.demographic", "death_days_to"]
DAYS_TO_LAST_FOLLOW_UP_COL_CANDIDATES: list[str] = [
    "days_to_last_follow_up",
    "days_to_last_followup",
    "DAYS_TO_LAST_FOLLOW_UP",
    "days_to_last_follow_up.diagnoses",
    "last_contact_days_to"
]


def first_match(cols, candidates) -> str | None:
    return next((c for c in candidates if c in cols), None)


def read_table(path: str | Path, index_col: int | None = 0) -> pd.DataFrame:
    path = str(path)
    if path.endswith((".tsv", ".txt", ".tsv.gz", ".txt.gz")):
        return pd.read_csv(path, sep = "\t", index_col = index_col)
    if path.endswith((".csv", ".csv.gz")):
        return pd.read_csv(path, index_col = index_col)
    return pd.read_csv(path, sep = None, engine = "python", index_col = index_col)


def load_matrix(path: str | Path) -> pd.DataFrame:
    '''
    Load a matrix with genes or cell types as rows and barcodes as columns.
    Row keys of the form SYMBOL|ENTREZ_ID are reduced to SYMBOL,
    and rows with unknown symbols ("?") are dropped.
    '''

    logger.info(f"Matrix at {path} will be loaded.")

    matrix = read_table(path)
    matrix = matrix.drop(columns = [column for column in LIST_OF_NAMES_OF_ANNOTATION_COLUMNS if column in matrix.columns])
    matrix.index = matrix.index.astype(str).str.split("|").str[0]
    matrix = matrix.loc[(matrix.index != "?") & (matrix.index != "")]

    logger.info(f"Matrix with {matrix.shape[0]} rows and {matrix.shape[1]} columns was loaded.")

    return matrix


def load_immune_cell_abundance_matrix(path: str | Path) -> pd.DataFrame:
    '''
    Load a matrix of cell types and samples of infiltration scores with barcodes truncated to sample IDs.
    '''
    matrix = read_table(path)
    matrix.index = matrix.index.astype(str).str.strip()
    matrix = matrix.apply(pd.to_numeric, errors = "coerce")
    return collapse_duplicate_samples(matrix)


def select_reference(immune_cell_abundance_matrix: pd.DataFrame, name_of_cell_type: str) -> pd.Series:
    if name_of_cell_type not in immune_cell_abundance_matrix.index:
        raise ValueError(f"Immune cell abundance matrix has no row for cell type {name_of_cell_type}.")
    return immune_cell_abundance_matrix.loc[name_of_cell_type].rename(name_of_cell_type)


def load_signature_genes(path: str | Path) -> list[str]:
    '''
    Load a flat list of gene symbols, one per line. Blank lines and lines starting with "#" are skipped.
    '''
    list_of_genes = []
    with open(path, "r", encoding = "utf-8") as file:
        for line in file:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if line not in list_of_genes:
                list_of_genes.append(line)
    if not list_of_genes:
        raise ValueError(f"Signature file {path} lists no genes.")

    logger.info(f"{len(list_of_genes)} signature genes were loaded.")

    return list_of_genes


def _get_patient_column(clinical_data: pd.DataFrame, name_of_patient_column: str | None) -> str:
    name_of_patient_column = name_of_patient_column or first_match(clinical_data.columns, PATIENT_COL_CANDIDATES)
    if name_of_patient_column is None:
        raise ValueError(f"Clinical data has none of the patient ID columns {PATIENT_COL_CANDIDATES}.")
    return name_of_patient_column


def _derive_times_and_events_from_vital_statuses(clinical_data: pd.DataFrame) -> tuple[pd.Series, pd.Series]:
    '''
    Derive times and events the way TCGA clinical tables record them.
    Deceased patients are observed until death and living patients until last follow-up.
    '''
    name_of_vital_status_column = first_match(clinical_data.columns, VITAL_STATUS_COL_CANDIDATES)
    name_of_days_to_death_column = first_match(clinical_data.columns, DAYS_TO_DEATH_COL_CANDIDATES)
    name_of_days_to_last_follow_up_column = first_match(clinical_data.columns, DAYS_TO_LAST_FOLLOW_UP_COL_CANDIDATES)
    if name_of_vital_status_column is None:
        raise ValueError(
            f"Clinical data has neither columns of times and events {TIME_COL_CANDIDATES} and {EVENT_COL_CANDIDATES} "
            f"nor a column of vital statuses {VITAL_STATUS_COL_CANDIDATES}."
        )
    if name_of_days_to_death_column is None and name_of_days_to_last_follow_up_column is None:
        raise ValueError(
            f"Clinical data has none of the columns of days to death {DAYS_TO_DEATH_COL_CANDIDATES} "
            f"or days to last follow-up {DAYS_TO_LAST_FOLLOW_UP_COL_CANDIDATES}."
        )

    logger.info(
        f"Times will be derived from {name_of_vital_status_column}, {name_of_days_to_death_column}, "
        f"and {name_of_days_to_last_follow_up_column}."
    )

    series_of_events = (
        clinical_data[name_of_vital_status_column]
        .astype(str)
        .str.strip()
        .str.lower()
        .map(MAP_OF_VITAL_STATUSES_TO_EVENTS)
    )
    series_of_missing_values = pd.Series(np.nan, index = clinical_data.index)
    series_of_days_to_death = (
        pd.to_numeric(clinical_data[name_of_days_to_death_column], errors = "coerce")
        if name_of_days_to_death_column is not None
        else series_of_missing_values
    )
    series_of_days_to_last_follow_up = (
        pd.to_numeric(clinical_data[name_of_days_to_last_follow_up_column], errors = "coerce")
        if name_of_days_to_last_follow_up_column is not None
        else series_of_missing_values
    )
    series_of_times = (
        series_of_days_to_death
        .where(series_of_events == 1, series_of_days_to_last_follow_up)
        .where(series_of_events.notna())
    )
    return series_of_times, series_of_events


def create_survival_table(
    clinical_data: pd.DataFrame,
    name_of_patient_column: str | None = None,
    name_of_time_column: str | None = None,
    name_of_event_column: str | None = None
) -> pd.DataFrame:
    '''
    Create a survival table indexed by patient ID with columns time and event.

    Times and events are read from columns like OS.time and OS when present.
    Otherwise times are days to death for deceased patients and days to last follow-up for living patients,
    and events are derived from vital statuses.
    Events may be recorded as 0 / 1 or as vital statuses Alive / Dead.
    Patients with undefined or nonpositive times or undefined events are dropped,
    and the first row of each duplicated patient is kept.
    '''
    name_of_patient_column = _get_patient_column(clinical_data, name_of_patient_column)
    name_of_time_column = name_of_time_column or first_match(clinical_data.columns, TIME_COL_CANDIDATES)
    name_of_event_column = name_of_event_column or first_match(clinical_data.columns, EVENT_COL_CANDIDATES)
    if name_of_time_column is not None and name_of_event_column is not None:
        check_required_columns(clinical_data, [name_of_patient_column, name_of_time_column, name_of_event_column], "clinical data")
        series_of_times = pd.to_numeric(clinical_data[name_of_time_column], errors = "coerce")
        series_of_events = (
            clinical_data[name_of_event_column]
            .astype(str)
            .str.strip()
            .str.lower()
            .map(MAP_OF_VITAL_STATUSES_TO_EVENTS)
        )
    else:
        series_of_times, series_of_events = _derive_times_and_events_from_vital_statuses(clinical_data)

    survival_table = pd.DataFrame(
        {
            "time": series_of_times.to_numpy(dtype = float),
            "event": series_of_events.to_numpy(dtype = float)
        },
        index = pd.Index(
            [get_patient_ID(patient_ID) for patient_ID in clinical_data[name_of_patient_column]],
            name = "patient_ID"
        )
    )
    number_of_patients = len(survival_table)
    survival_table = survival_table.dropna(subset = ["time", "event"])
    survival_table = survival_table.loc[survival_table["time"] > 0]
    survival_table = survival_table.loc[~survival_table.index.duplicated(keep = "first")]
    survival_table["event"] = survival_table["event"].astype(int)

    logger.info(f"Survival table has {len(survival_table)} of {number_of_patients} patients with usable survival data.")

    return survival_table


def create_data_frame_of_covariates(
    clinical_data: pd.DataFrame,
    name_of_patient_column: str | None = None,
    name_of_age_column: str = "age_at_initial_pathologic_diagnosis",
    name_of_sex_column: str = "gender"
) -> pd.DataFrame:
    '''
    Create a data frame indexed by patient ID with columns age and sex (0 for female and 1 for male).
    '''
    name_of_patient_column = _get_patient_column(clinical_data, name_of_patient_column)
    check_required_columns(clinical_data, [name_of_patient_column, name_of_age_column, name_of_sex_column], "clinical data")

    data_frame_of_covariates = pd.DataFrame(
        {
            "age": pd.to_numeric(clinical_data[name_of_age_column], errors = "coerce").to_numpy(),
            "sex": (
                clinical_data[name_of_sex_column]
                .astype(str)
                .str.strip()
                .str.lower()
                .map(MAP_OF_SEXES_TO_INDICATORS)
                .to_numpy()
            )
        },
        index = pd.Index(
            [get_patient_ID(patient_ID) for patient_ID in clinical_data[name_of_patient_column]],
            name = "patient_ID"
        )
    )
    data_frame_of_covariates = data_frame_of_covariates.dropna()
    return data_frame_of_covariates.loc[~data_frame_of_covariates.index.duplicated(keep = "first")]


def load_multivariate_coefficients(path: str | Path) -> pd.DataFrame:
    '''
    Load a table of genes, coefficients, and p values of multivariate Cox models
    into a data frame indexed by gene with columns coef and p_value.
    '''
    table = read_table(path, index_col = None)
    name_of_gene_column = first_match(table.columns, GENE_COL_CANDIDATES)
    if name_of_gene_column is None:
        # A table written with its index has an unnamed first column of genes.
        name_of_gene_column = table.columns[0]
    name_of_p_value_column = first_match(table.columns, P_VALUE_COL_CANDIDATES)
    if name_of_p_value_column is None:
        raise ValueError(f"Table of multivariate coefficients has none of the p value columns {P_VALUE_COL_CANDIDATES}.")
    check_required_columns(table, ["coef"], "multivariate coefficients")
    data_frame_of_coefficients = (
        table
        .rename(columns = {name_of_gene_column: "gene", name_of_p_value_column: "p_value"})
        [["gene", "coef", "p_value"]]
        .set_index("gene")
    )
    data_frame_of_coefficients = data_frame_of_coefficients.apply(pd.to_numeric, errors = "coerce")
    number_of_genes = len(data_frame_of_coefficients)
    data_frame_of_coefficients = data_frame_of_coefficients.replace([np.inf, -np.inf], np.nan).dropna()

    logger.info(f"{len(data_frame_of_coefficients)} of {number_of_genes} genes have defined multivariate coefficients and p values.")

    return data_frame_of_coefficients
