'''
Find an optimal cutpoint of expression values that maximizes the separation of survival
between patients with expression above the cutpoint and patients with expression at most the cutpoint.

Candidate cutpoints are the distinct expression values for which both groups contain at least
a minimum proportion of patients. The candidate with the largest log-rank test statistic is chosen;
among equal statistics the smallest candidate is chosen.
'''

import math

import numpy as np
import pandas as pd
from lifelines.statistics import logrank_test


def find_maximally_selected_cutpoint(
    data_frame_of_times_events_and_expression_values: pd.DataFrame,
    minimum_proportion: float = 0.1
) -> float | None:
    '''
    Provide the maximally selected cutpoint, or None if no candidate cutpoint is admissible.

    Parameters
    ----------
    data_frame_of_times_events_and_expression_values: pd.DataFrame -- data frame with columns time, event, and expression
    minimum_proportion: float -- minimum proportion of patients in each group
    '''
    df = data_frame_of_times_events_and_expression_values.dropna(subset = ["time", "event", "expression"])
    number_of_patients = len(df)
    if number_of_patients == 0:
        return None
    minimum_number_of_patients = max(1, math.ceil(minimum_proportion * number_of_patients))
    array_of_expression_values = df["expression"].to_numpy(dtype = float)
    best_cutpoint = None
    best_test_statistic = -np.inf
    for candidate_cutpoint in np.unique(array_of_expression_values):
        array_of_indicators_of_high_expression = array_of_expression_values > candidate_cutpoint
        number_of_patients_with_high_expression = int(array_of_indicators_of_high_expression.sum())
        if (
            number_of_patients_with_high_expression < minimum_number_of_patients or
            number_of_patients - number_of_patients_with_high_expression < minimum_number_of_patients
        ):
            continue
        high = df.loc[array_of_indicators_of_high_expression]
        low = df.loc[~array_of_indicators_of_high_expression]
        test_statistic = logrank_test(
            high["time"],
            low["time"],
            event_observed_A = high["event"],
            event_observed_B = low["event"]
        ).test_statistic
        if np.isfinite(test_statistic) and test_statistic > best_test_statistic:
            best_test_statistic = test_statistic
            best_cutpoint = float(candidate_cutpoint)
    return best_cutpoint
