'''
`cox_models.py` fits, for each gene, a Cox proportional hazards model of overall survival
vs. log2(expression + 1) of the gene, age at diagnosis, and sex,
and provides a table of genes, coefficients of expression, and p values of Wald tests.

The table is consumed by the multivariate filter of the survival screen
when no externally computed table of coefficients is provided for a cohort.
'''

import logging

import numpy as np
import pandas as pd
from lifelines import CoxPHFitter

from immune_evasion_screen.survival_analysis.survival_screening import (
    create_data_frame_of_patients_and_expression_values,
    get_name_of_expression_column
)


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


def fit_Cox_model_for_gene(data_frame_of_times_events_expression_values_and_covariates: pd.DataFrame, penalizer: float = 0.0) -> tuple[float, float]:
    '''
    Fit a Cox model to a data frame with columns time, event, expression, age, and sex
    and return the coefficient and p value of expression.
    '''
    df = data_frame_of_times_events_expression_values_and_covariates.dropna()
    if df["expression"].nunique() < 2:
        raise ValueError("Expression values are constant.")
    if df["event"].sum() == 0:
        raise ValueError("No patient has an event.")
    # Constant covariates make the model singular.
    list_of_varying_covariates = [column for column in ["age", "sex"] if df[column].nunique() > 1]
    cox_proportional_hazards_fitter = CoxPHFitter(penalizer = penalizer)
    cox_proportional_hazards_fitter.fit(
        df[["time", "event", "expression"] + list_of_varying_covariates],
        duration_col = "time",
        event_col = "event",
        show_progress = False
    )
    series_of_statistics = cox_proportional_hazards_fitter.summary.loc["expression"]
    return float(series_of_statistics["coef"]), float(series_of_statistics["p"])


def fit_multivariate_Cox_models(
    expression_matrix: pd.DataFrame,
    survival_table: pd.DataFrame,
    data_frame_of_covariates: pd.DataFrame,
    list_of_genes: list[str] | None = None,
    penalizer: float = 0.0
) -> pd.DataFrame:
    '''
    Provide a data frame indexed by gene with columns coef and p_value.
    Genes whose models fail to fit are logged and excluded.
    '''
    if list_of_genes is None:
        list_of_genes = expression_matrix.index.tolist()
    list_of_genes = [gene for gene in list_of_genes if gene in expression_matrix.index]

    logger.info(f"Multivariate Cox models will be fit for {len(list_of_genes)} genes.")

    list_of_rows = []
    if list_of_genes:
        data_frame_of_patients_and_expression_values = create_data_frame_of_patients_and_expression_values(
            np.log2(expression_matrix.loc[list_of_genes].astype(float) + 1).rename(index = get_name_of_expression_column),
            survival_table
        ).join(data_frame_of_covariates[["age", "sex"]], how = "inner")
        for gene in list_of_genes:
            name_of_expression_column = get_name_of_expression_column(gene)
            try:
                coef, p_value = fit_Cox_model_for_gene(
                    data_frame_of_patients_and_expression_values[["time", "event", name_of_expression_column, "age", "sex"]].rename(
                        columns = {name_of_expression_column: "expression"}
                    ),
                    penalizer = penalizer
                )
            except Exception as exception:
                logger.warning(f"Cox model for gene {gene} could not be fit and gene {gene} will be excluded: {exception}")
                continue
            list_of_rows.append((gene, coef, p_value))
    data_frame_of_coefficients = pd.DataFrame(list_of_rows, columns = ["gene", "coef", "p_value"]).set_index("gene")

    logger.info(f"Multivariate Cox models were fit for {len(data_frame_of_coefficients)} of {len(list_of_genes)} genes.")

    return data_frame_of_coefficients
