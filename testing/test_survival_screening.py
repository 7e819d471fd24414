'''
Usage
pytest -q testing/test_survival_screening.py

Verify the multivariate filter, the log-rank screen and its isolation of failing genes,
maximally selected cutpoints, and multivariate Cox models.
'''

from statsmodels.stats.multitest import multipletests
import numpy as np
import pandas as pd
import pytest

from immune_evasion_screen.survival_analysis.cox_models import fit_multivariate_Cox_models
from immune_evasion_screen.survival_analysis.cutpoints import find_maximally_selected_cutpoint
from immune_evasion_screen.survival_analysis.survival_screening import (
    create_data_frame_of_patients_and_expression_values,
    filter_multivariate_coefficients,
    screen_log_rank
)


NUMBER_OF_PATIENTS = 40
LIST_OF_PATIENT_IDS = [f"TCGA-AA-{number:04d}" for number in range(1, NUMBER_OF_PATIENTS + 1)]
LIST_OF_SAMPLE_IDS = [f"{patient_ID}-01" for patient_ID in LIST_OF_PATIENT_IDS]


@pytest.fixture(scope = "module")
def survival_table() -> pd.DataFrame:
    # Patients with higher expression of GOOD die sooner.
    return pd.DataFrame(
        {
            "time": [1_000.0 - 20.0 * number for number in range(1, NUMBER_OF_PATIENTS + 1)],
            "event": [1] * NUMBER_OF_PATIENTS
        },
        index = pd.Index(LIST_OF_PATIENT_IDS, name = "patient_ID")
    )


@pytest.fixture(scope = "module")
def expression_matrix() -> pd.DataFrame:
    array_of_positions = np.arange(1, NUMBER_OF_PATIENTS + 1, dtype = float)
    return pd.DataFrame(
        [
            array_of_positions + 1_000.0,
            array_of_positions,
            -array_of_positions,
            array_of_positions
        ],
        index = ["INVALID", "GOOD", "BROKEN", "ALSO_GOOD"],
        columns = LIST_OF_SAMPLE_IDS
    )


def find_median_cutpoint_unless_unusual(data_frame_of_times_events_and_expression_values: pd.DataFrame) -> float | None:
    series_of_expression_values = data_frame_of_times_events_and_expression_values["expression"]
    if series_of_expression_values.max() > 1_000:
        return None
    if series_of_expression_values.min() < 0:
        raise RuntimeError("Cutpoint routine failed.")
    return float(series_of_expression_values.median())


def test_that_multivariate_filter_keeps_coefficients_greater_than_threshold():
    data_frame_of_coefficients = pd.DataFrame(
        {"coef": [0.5, 0.1, 0.16, -0.3, 0.15], "p_value": [0.001, 0.2, 0.04, 0.01, 0.03]},
        index = pd.Index(["A", "B", "C", "D", "E"], name = "gene")
    )
    unfiltered_data_frame, filtered_data_frame = filter_multivariate_coefficients(data_frame_of_coefficients)
    assert filtered_data_frame.index.tolist() == ["A", "C"]
    assert unfiltered_data_frame.columns.tolist() == ["Cox_coef", "Cox_p_value", "Cox_FDR"]
    _, array_of_expected_FDRs, _, _ = multipletests(data_frame_of_coefficients["p_value"], method = "fdr_bh")
    np.testing.assert_allclose(unfiltered_data_frame["Cox_FDR"].to_numpy(), array_of_expected_FDRs)


def test_that_samples_are_mapped_to_patients(expression_matrix, survival_table):
    data_frame_of_patients_and_expression_values = create_data_frame_of_patients_and_expression_values(
        expression_matrix,
        survival_table
    )
    assert data_frame_of_patients_and_expression_values.index.tolist() == LIST_OF_PATIENT_IDS
    assert data_frame_of_patients_and_expression_values.columns.tolist()[:2] == ["time", "event"]
    assert data_frame_of_patients_and_expression_values.loc["TCGA-AA-0003", "GOOD"] == 3.0


def test_that_genes_without_cutpoints_and_failing_genes_are_excluded(expression_matrix, survival_table):
    unfiltered_data_frame, filtered_data_frame = screen_log_rank(
        expression_matrix,
        survival_table,
        ["INVALID", "GOOD", "BROKEN", "ALSO_GOOD"],
        find_median_cutpoint_unless_unusual
    )
    assert unfiltered_data_frame.index.tolist() == ["GOOD", "ALSO_GOOD"]
    assert filtered_data_frame.index.tolist() == ["GOOD", "ALSO_GOOD"]
    assert unfiltered_data_frame.loc["GOOD", "log_rank_cutpoint"] == 20.5
    assert unfiltered_data_frame.loc["GOOD", "log_rank_number_of_patients_in_High"] == 20
    assert unfiltered_data_frame.loc["GOOD", "log_rank_p_value"] < 0.001


def test_that_cutpoint_leaving_an_empty_group_excludes_gene(expression_matrix, survival_table):
    unfiltered_data_frame, _ = screen_log_rank(
        expression_matrix,
        survival_table,
        ["GOOD"],
        lambda df: float(df["expression"].max())
    )
    assert unfiltered_data_frame.empty


def test_that_no_genes_yield_empty_tables(expression_matrix, survival_table):
    unfiltered_data_frame, filtered_data_frame = screen_log_rank(expression_matrix, survival_table, [], find_maximally_selected_cutpoint)
    assert unfiltered_data_frame.empty and filtered_data_frame.empty
    assert "log_rank_FDR" in unfiltered_data_frame.columns


def test_that_maximally_selected_cutpoint_leaves_enough_patients_in_each_group(survival_table):
    data_frame_of_times_events_and_expression_values = survival_table.assign(
        expression = np.arange(1, NUMBER_OF_PATIENTS + 1, dtype = float)
    )
    cutpoint = find_maximally_selected_cutpoint(data_frame_of_times_events_and_expression_values, minimum_proportion = 0.1)
    assert cutpoint in set(data_frame_of_times_events_and_expression_values["expression"])
    number_of_patients_with_high_expression = int((data_frame_of_times_events_and_expression_values["expression"] > cutpoint).sum())
    assert 4 <= number_of_patients_with_high_expression <= NUMBER_OF_PATIENTS - 4


def test_that_constant_expression_has_no_cutpoint(survival_table):
    data_frame_of_times_events_and_expression_values = survival_table.assign(expression = 1.0)
    assert find_maximally_selected_cutpoint(data_frame_of_times_events_and_expression_values) is None


@pytest.fixture(scope = "module")
def data_for_Cox_models() -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    random_number_generator = np.random.default_rng(0)
    number_of_patients = 200
    array_of_expression_values = random_number_generator.lognormal(mean = 2.0, sigma = 1.0, size = number_of_patients)
    array_of_hazards = np.exp(0.8 * np.log2(array_of_expression_values + 1))
    array_of_times = random_number_generator.exponential(1.0 / array_of_hazards) * 1_000 + 1
    list_of_patient_IDs = [f"TCGA-BB-{number:04d}" for number in range(number_of_patients)]
    expression_matrix = pd.DataFrame(
        [array_of_expression_values, np.full(number_of_patients, 3.0), array_of_expression_values],
        index = ["RISK", "FLAT", "age"],
        columns = [f"{patient_ID}-01A-11R" for patient_ID in list_of_patient_IDs]
    )
    survival_table = pd.DataFrame(
        {"time": array_of_times, "event": random_number_generator.binomial(1, 0.8, size = number_of_patients)},
        index = list_of_patient_IDs
    )
    data_frame_of_covariates = pd.DataFrame(
        {
            "age": random_number_generator.integers(30, 85, size = number_of_patients).astype(float),
            "sex": random_number_generator.integers(0, 2, size = number_of_patients).astype(float)
        },
        index = list_of_patient_IDs
    )
    return expression_matrix, survival_table, data_frame_of_covariates


def test_that_Cox_models_detect_hazardous_expression_and_exclude_constant_genes(data_for_Cox_models):
    expression_matrix, survival_table, data_frame_of_covariates = data_for_Cox_models
    data_frame_of_coefficients = fit_multivariate_Cox_models(expression_matrix, survival_table, data_frame_of_covariates, ["RISK", "FLAT"])
    assert data_frame_of_coefficients.index.tolist() == ["RISK"]
    assert data_frame_of_coefficients.columns.tolist() == ["coef", "p_value"]
    assert data_frame_of_coefficients.loc["RISK", "coef"] > 0.15
    assert data_frame_of_coefficients.loc["RISK", "p_value"] < 0.05


def test_that_gene_named_like_covariate_is_modeled(data_for_Cox_models):
    expression_matrix, survival_table, data_frame_of_covariates = data_for_Cox_models
    data_frame_of_coefficients = fit_multivariate_Cox_models(expression_matrix, survival_table, data_frame_of_covariates)
    assert data_frame_of_coefficients.index.tolist() == ["RISK", "age"]
    assert data_frame_of_coefficients.loc["age", "coef"] == pytest.approx(data_frame_of_coefficients.loc["RISK", "coef"])


def test_that_gene_named_like_survival_column_is_screened(expression_matrix, survival_table):
    unfiltered_data_frame, _ = screen_log_rank(
        expression_matrix.rename(index = {"GOOD": "time"}),
        survival_table,
        ["time", "ALSO_GOOD"],
        find_median_cutpoint_unless_unusual
    )
    assert unfiltered_data_frame.index.tolist() == ["time", "ALSO_GOOD"]
    assert unfiltered_data_frame.loc["time", "log_rank_cutpoint"] == 20.5
