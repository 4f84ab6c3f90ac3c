"""
This is the statistical analysis script for the instance selector
hubness experiments (reducer_hubness_runner.py).

It does the following:
1.  Loads the latest detailed results CSV of the selector experiments.
2.  For every compared measure, builds a (dataset x selector) matrix.
3.  Runs a Friedman test to check for an overall difference.
4.  Runs a Nemenyi post-hoc test when the difference is significant.
5.  Saves the test results and the average selector ranks as CSVs.
"""

import pandas as pd
import scikit_posthocs as spc
from scipy import stats
from pathlib import Path
import sys
from typing import Dict

# --- Configuration ---
try:
    SCRIPT_DIR = Path(__file__).parent.resolve()
except NameError:
    SCRIPT_DIR = Path.cwd()

PROJECT_ROOT = SCRIPT_DIR.parent
RESULTS_REDUCER_DIR = PROJECT_ROOT / "results" / "reducer_hubness"

OUTPUT_DIR = PROJECT_ROOT / "results" / "reducer_stats"
OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

# Measure -> whether higher values are better (for the ranks)
MEASURES: Dict[str, bool] = {
    'Hubness_Corr': True,
    'Bad_Hubness_Corr': True,
    'Pointwise_Bad_Hubness_Error': False,
    'Storage_percent': False,
}

ALPHA = 0.05


# ---------------------

def find_latest_results() -> Path:
    """Returns the newest detailed results file of the selector runner."""
    try:
        results_file = max(RESULTS_REDUCER_DIR.glob("reducer_hubness_results_*.csv"))
    except ValueError:
        print(f"Error: No selector results found in {RESULTS_REDUCER_DIR}")
        print("Please run experiment_runners/reducer_hubness_runner.py first.")
        sys.exit(1)
    print("[Stats-Reducers] Using selector results:", results_file.name)
    return results_file


def build_measure_matrix(results: pd.DataFrame, measure: str) -> pd.DataFrame:
    """
    Builds the (dataset x selector) matrix of one measure.
    Datasets with a missing value for any selector are dropped.
    """
    matrix = results.pivot_table(index='Dataset', columns='Selector', values=measure, aggfunc='mean')
    complete = matrix.dropna(axis=0, how='any')
    if len(complete) < len(matrix):
        print(f"  Dropped {len(matrix) - len(complete)} dataset(s) with missing {measure} values.")
    return complete


def run_stats(matrix: pd.DataFrame, measure: str, higher_is_better: bool) -> None:
    """
    Runs the Friedman/Nemenyi tests for one measure and saves the results.
    """
    print(f"\n  Running Friedman test for {measure} "
          f"({matrix.shape[0]} datasets x {matrix.shape[1]} selectors)...")

    # --- 1. Friedman Test ---
    stat, p_friedman = stats.friedmanchisquare(*[matrix[col] for col in matrix.columns])
    print(f"  Friedman Test: chi2={stat:.4f}, p-value={p_friedman:.6e}")

    friedman_df = pd.DataFrame([{'metric': measure, 'chi2': stat, 'p-value': p_friedman}])
    friedman_df.to_csv(OUTPUT_DIR / f"{measure}_friedman_test.csv", index=False)

    # --- 2. Average Ranks ---
    avg_ranks = matrix.rank(axis=1, ascending=not higher_is_better, method='average').mean()
    avg_ranks = avg_ranks.sort_values()  # Sort by rank (lower is better)
    ranks_path = OUTPUT_DIR / f"{measure}_avg_ranks.csv"
    avg_ranks.to_csv(ranks_path)
    print(f"  Average Ranks (lower is better) saved to {ranks_path.relative_to(PROJECT_ROOT)}:")
    print(avg_ranks.to_string(float_format="%.3f"))

    if p_friedman >= ALPHA:
        print("  Result: No significant difference found. Skipping post-hoc.")
        return

    # --- 3. Nemenyi Post-Hoc Test ---
    print("  Result: Significant difference found. Running Nemenyi post-hoc test...")
    nemenyi_results = spc.posthoc_nemenyi_friedman(matrix.to_numpy())
    nemenyi_results.columns = matrix.columns
    nemenyi_results.index = matrix.columns

    nemenyi_path = OUTPUT_DIR / f"{measure}_nemenyi_matrix.csv"
    nemenyi_results.to_csv(nemenyi_path, float_format="%.6f")
    print(f"\n  Nemenyi p-value matrix saved to {nemenyi_path.relative_to(PROJECT_ROOT)}")
    print(nemenyi_results.to_string(float_format="%.4f"))


# --- Main execution ---
def main():
    """
    Main function to run the selector comparison.
    """
    print("\n--- Instance Selector Statistical Comparison (Friedman + Nemenyi) ---")

    results = pd.read_csv(find_latest_results())

    for measure, higher_is_better in MEASURES.items():
        try:
            if measure not in results.columns:
                print(f"\n  Measure {measure} not in the results. Skipping.")
                continue
            matrix = build_measure_matrix(results, measure)
            if matrix.shape[1] < 3 or matrix.shape[0] < 2:
                print(f"  Not enough selectors/datasets to compare {measure}. Skipping.")
                continue
            run_stats(matrix, measure, higher_is_better)

        except Exception as e:
            print(f"\n  An error occurred while processing {measure}: {e}")
            import traceback
            traceback.print_exc()

    print("\n[Stats-Reducers] Selector analysis complete.")


if __name__ == "__main__":
    main()
