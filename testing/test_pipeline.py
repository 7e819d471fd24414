'''
Usage
pytest -q testing/test_pipeline.py

Run the screening funnel end to end on a synthetic cohort of 40 samples
with functions standing in for GSVA, survminer, DESeq2, and clusterProfiler.
Gene DRIVER is constructed to pass every screen.
'''

from pathlib import Path

import pandas as pd
import pytest

from immune_evasion_screen.config import Paths, create_cohort_configuration
from immune_evasion_screen.pipeline import Collaborators, main, run_pipeline


NAME_OF_COHORT = "TCGA-LUAD"
NUMBER_OF_SAMPLES = 40
LIST_OF_POSITIONS = list(range(1, NUMBER_OF_SAMPLES + 1))
LIST_OF_BARCODES = [f"TCGA-AA-{position:04d}-01A-11R-A000-07" for position in LIST_OF_POSITIONS]
LIST_OF_FILLERS = ["FILLER1", "FILLER2", "FILLER3", "FILLER4"]


def compute_signature_scores_from_DRIVER(expression_matrix: pd.DataFrame, list_of_genes: list[str]) -> pd.Series:
    return -expression_matrix.loc["DRIVER"]


def find_median_cutpoint(data_frame_of_times_events_and_expression_values: pd.DataFrame) -> float:
    return float(data_frame_of_times_events_and_expression_values["expression"].median())


def fit_differential_expression_by_difference_of_means(counts_matrix: pd.DataFrame, series_of_groups: pd.Series) -> pd.Series:
    return (
        counts_matrix.loc[:, (series_of_groups == "activated").to_numpy()].mean(axis = 1) -
        counts_matrix.loc[:, (series_of_groups == "inactivated").to_numpy()].mean(axis = 1)
    )


def run_gene_set_enrichment_with_fixed_terms(series_of_ranked_log2_fold_changes: pd.Series, namespace: str) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "Description": ["type I interferon signaling pathway", "peptide antigen binding", "cytokinesis"],
            "pvalue": [0.001, 0.001, 0.001],
            "p.adjust": [0.01, 0.01, 0.01]
        }
    )


def write_matrix(dictionary_of_rows: dict[str, list[float]], path: Path, name_of_index: str, dictionary_of_annotations = None) -> None:
    matrix = pd.DataFrame.from_dict(dictionary_of_rows, orient = "index", columns = LIST_OF_BARCODES)
    for name_of_column, value in (dictionary_of_annotations or {}).items():
        matrix.insert(0, name_of_column, value)
    matrix.index.name = name_of_index
    matrix.to_csv(path, sep = "\t")


@pytest.fixture
def paths(tmp_path) -> Paths:
    paths = Paths(NAME_OF_COHORT, root = tmp_path)
    paths.data_of_cohort.mkdir(parents = True)

    dictionary_of_expression_values = {"DRIVER|1": [float(position) for position in LIST_OF_POSITIONS]}
    dictionary_of_counts = {"DRIVER|1": [10.0 * position for position in LIST_OF_POSITIONS]}
    dictionary_of_copy_numbers = {"DRIVER": [-1 if position <= 20 else 1 for position in LIST_OF_POSITIONS]}
    for number, filler in enumerate(LIST_OF_FILLERS, start = 1):
        dictionary_of_expression_values[f"{filler}|{number + 1}"] = [
            float((7 * position + 13 * number) % NUMBER_OF_SAMPLES + 5) for position in LIST_OF_POSITIONS
        ]
        dictionary_of_counts[f"{filler}|{number + 1}"] = [50.0 + number] * NUMBER_OF_SAMPLES
        dictionary_of_copy_numbers[filler] = [(position + number) % 3 - 1 for position in LIST_OF_POSITIONS]
    write_matrix(dictionary_of_expression_values, paths.expression_matrix, "gene_id")
    write_matrix(dictionary_of_counts, paths.counts_matrix, "gene_id")
    write_matrix(
        dictionary_of_copy_numbers,
        paths.copy_number_matrix,
        "Gene Symbol",
        dictionary_of_annotations = {"Cytoband": "1p36", "Locus ID": 0}
    )
    write_matrix(
        {
            "Activated CD8 T cell": [float(NUMBER_OF_SAMPLES + 1 - position) for position in LIST_OF_POSITIONS],
            "Activated B cell": [float(position) for position in LIST_OF_POSITIONS]
        },
        paths.immune_cell_abundance_matrix,
        "cell_type"
    )
    pd.DataFrame(
        {
            "bcr_patient_barcode": [barcode[:12] for barcode in LIST_OF_BARCODES],
            "OS.time": [1_000.0 - 20.0 * position for position in LIST_OF_POSITIONS],
            "OS": [1] * NUMBER_OF_SAMPLES,
            "age_at_initial_pathologic_diagnosis": [40 + position for position in LIST_OF_POSITIONS],
            "gender": ["FEMALE" if position % 2 else "MALE" for position in LIST_OF_POSITIONS]
        }
    ).to_csv(paths.clinical_data, sep = "\t", index = False)
    paths.signature_genes.write_text("CD8A\nGZMB\nPRF1\n")
    pd.DataFrame(
        {"gene": ["DRIVER"] + LIST_OF_FILLERS, "coef": [0.5, 0.01, 0.02, -0.3, 0.1], "p_value": [0.001, 0.5, 0.6, 0.2, 0.3]}
    ).to_csv(paths.multivariate_coefficients, index = False)
    return paths


@pytest.fixture
def collaborators() -> Collaborators:
    return Collaborators(
        compute_signature_scores = compute_signature_scores_from_DRIVER,
        find_cutpoint = find_median_cutpoint,
        fit_differential_expression = fit_differential_expression_by_difference_of_means,
        run_gene_set_enrichment = run_gene_set_enrichment_with_fixed_terms
    )


def test_that_DRIVER_passes_every_screen(paths, collaborators):
    paths.ensure_dependencies_exist()
    cohort_configuration = create_cohort_configuration(
        NAME_OF_COHORT,
        minimum_group_size = 5,
        number_of_workers = 2,
        kind_of_pool = "threads"
    )
    final_gene_list = run_pipeline(cohort_configuration, paths, collaborators)
    assert final_gene_list.index.tolist() == ["DRIVER"]
    assert final_gene_list.loc["DRIVER", "CD8_rho"] == pytest.approx(-1.0)
    assert final_gene_list.loc["DRIVER", "signature_rho"] == pytest.approx(-1.0)
    assert final_gene_list.loc["DRIVER", "Cox_coef"] == 0.5
    assert final_gene_list.loc["DRIVER", "log_rank_p_value"] < 0.05
    assert final_gene_list.loc["DRIVER", "number_of_immune_terms"] == 3
    assert final_gene_list.loc["DRIVER", "number_of_antigen_terms"] == 3

    for path in [
        paths.stratified_groups,
        paths.unfiltered_correlations_with_CD8_T_cells,
        paths.filtered_correlations_with_signature,
        paths.signature_scores,
        paths.unfiltered_log_rank_tests,
        paths.merged_gene_list,
        paths.final_gene_list
    ]:
        assert path.exists()

    data_frame_of_stratified_groups = pd.read_csv(paths.stratified_groups)
    data_frame_of_groups_of_DRIVER = data_frame_of_stratified_groups.loc[data_frame_of_stratified_groups["gene"] == "DRIVER"]
    assert (data_frame_of_groups_of_DRIVER["group"] == "inactivated").sum() == 12
    assert (data_frame_of_groups_of_DRIVER["group"] == "activated").sum() == 12

    data_frame_of_stages = pd.read_csv(paths.stage_counts)
    assert data_frame_of_stages["stage"].tolist() == [
        "normalization",
        "stratification",
        "correlation_with_CD8_T_cells",
        "correlation_with_signature",
        "multivariate_Cox_filter",
        "log_rank_screen",
        "merging",
        "pathway_annotation"
    ]
    assert data_frame_of_stages["number_of_genes_after"].iloc[-1] == 1


def test_that_clinical_data_with_vital_statuses_is_screened(paths, collaborators):
    pd.DataFrame(
        {
            "bcr_patient_barcode": [barcode[:12] for barcode in LIST_OF_BARCODES],
            "vital_status": ["Dead"] * NUMBER_OF_SAMPLES,
            "days_to_death": [1_000.0 - 20.0 * position for position in LIST_OF_POSITIONS],
            "days_to_last_follow_up": ["[Not Applicable]"] * NUMBER_OF_SAMPLES,
            "age_at_initial_pathologic_diagnosis": [40 + position for position in LIST_OF_POSITIONS],
            "gender": ["FEMALE" if position % 2 else "MALE" for position in LIST_OF_POSITIONS]
        }
    ).to_csv(paths.clinical_data, sep = "\t", index = False)
    cohort_configuration = create_cohort_configuration(NAME_OF_COHORT, minimum_group_size = 5, number_of_workers = 1)
    final_gene_list = run_pipeline(cohort_configuration, paths, collaborators)
    assert final_gene_list.index.tolist() == ["DRIVER"]
    assert final_gene_list.loc["DRIVER", "log_rank_p_value"] < 0.05


def test_that_large_minimum_group_size_leaves_no_genes(paths, collaborators):
    cohort_configuration = create_cohort_configuration(NAME_OF_COHORT, number_of_workers = 1)
    final_gene_list = run_pipeline(cohort_configuration, paths, collaborators)
    assert final_gene_list.empty


def test_that_unknown_cohort_is_rejected_by_command_line_interface():
    with pytest.raises(ValueError):
        main(["--cohort", "TCGA-XYZ"])


def test_that_threads_are_rejected_by_command_line_interface(capsys):
    with pytest.raises(SystemExit):
        main(["--cohort", NAME_OF_COHORT, "--kind-of-pool", "threads"])
    assert "threads" in capsys.readouterr().err
