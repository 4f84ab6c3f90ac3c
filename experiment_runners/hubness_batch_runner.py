"""
This script runs the batch hubness analysis over a list of datasets.

It does the following:
1.  Loads every dataset (.arff or .csv) from the data directory.
2.  For every dataset and distance metric:
    a. Loads the cached distance matrix file, or computes and caches it.
    b. Computes the kNN sets once, for k = K_MAX.
    c. Sweeps k = 1..K_MAX (by truncating the kNN sets) and records the
       occurrence stdev, skewness and kurtosis, the label mismatch rate,
       the neighbor entropy statistics, the threshold percentages, the
       top-hub cluster measures, the hub/orphan/regular fractions and
       the highest occurrences.
    d. Writes the fuzzy class-to-class hubness matrices for every k.
3.  Saves the per-k results and a short summary as timestamped CSVs.

A dataset that fails is reported and skipped; the batch goes on.
"""

# --- Path Setup ---
from pathlib import Path
import sys
from typing import Any, Dict, List

# Define paths
try:
    # This works when run as a script
    SCRIPT_DIR = Path(__file__).resolve().parent
except NameError:
    # Fallback for interactive/notebook use
    SCRIPT_DIR = Path.cwd()

PROJECT_ROOT = SCRIPT_DIR.parent
DATA_DIR = PROJECT_ROOT / 'data' / 'datasets'
RESULTS_DIR = PROJECT_ROOT / 'results' / 'hubness_batch'
# Distance matrices are cached here and shared with the other runners
DMAT_CACHE_DIR = PROJECT_ROOT / 'results' / 'dmat_cache'

# Create directories
RESULTS_DIR.mkdir(parents=True, exist_ok=True)
DMAT_CACHE_DIR.mkdir(parents=True, exist_ok=True)

# Add project root to path to find other modules
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
# --- End Path Setup ---

import time
from datetime import datetime
import numpy as np
import pandas as pd

# --- Import Project Modules ---
try:
    from hubness_modules.dataset import DataSet, load_dataset
    from hubness_modules.distances import get_metric
    from hubness_modules.distance_matrix import DistanceMatrix
    from hubness_modules.neighbor_sets import NeighborSetFinder
    from hubness_modules import hubness_stats
except ImportError as exc:
    print(f"Error: Could not import project modules (dataset, distance_matrix, neighbor_sets, etc.)")
    print(f"Ensure they are in the project root directory: {PROJECT_ROOT}")
    raise

# --- Experiment Configuration ---

# Dataset file -> class column (None = last column)
DATASETS: Dict[str, Any] = {
    'iris.arff': None,
    'wine.arff': None,
    'segment.arff': None,
}

METRICS: List[str] = ['Euclidean', 'Manhattan']
K_MAX = 50
NUM_THREADS = 4
THRESHOLDS = hubness_stats.DEFAULT_THRESHOLDS
TOP_HUB_SIZES = hubness_stats.DEFAULT_TOP_HUBS
NUM_HIGHEST_OCCURRENCES = hubness_stats.DEFAULT_NUM_EXTREMES


# -----------------------------


def get_distance_matrix(dataset: DataSet, metric_name: str) -> DistanceMatrix:
    """Loads the cached distance matrix of the dataset, or computes and caches it."""
    cache_file = DMAT_CACHE_DIR / f"{dataset.name}_{metric_name}.dmat"
    if cache_file.exists():
        dist_matrix = DistanceMatrix.load(cache_file)
        if dist_matrix.size == dataset.size():
            return dist_matrix
        print(f"  [Batch Runner] Cached matrix size mismatch, recomputing {cache_file.name}")

    dist_matrix = DistanceMatrix.compute(dataset.X, get_metric(metric_name), NUM_THREADS)
    dist_matrix.save(cache_file)
    return dist_matrix


def analyze_dataset(dataset: DataSet, metric_name: str) -> Dict[str, Any]:
    """
    Runs every k-sweep explorer for one dataset and metric.

    Returns:
        Dict with 'rows' (one result dict per k) and 'class_to_class'
        (one result dict per matrix cell and k).
    """
    metric = get_metric(metric_name)
    dist_matrix = get_distance_matrix(dataset, metric_name)
    k_max = min(K_MAX, dataset.size() - 1)

    nsf = NeighborSetFinder(dataset, dist_matrix, metric, NUM_THREADS)
    nsf.calculate_neighbor_sets(k_max)

    start_time = time.time()
    moments = hubness_stats.skewness_kurtosis(nsf, k_max)
    stdevs = hubness_stats.stdev_range(nsf, k_max)
    mismatch = hubness_stats.label_mismatch(nsf, k_max)
    entropies = hubness_stats.neighbor_entropies(nsf, k_max)
    at_least = hubness_stats.threshold_percentages(nsf, k_max, THRESHOLDS)
    fractions = hubness_stats.hub_orphan_regular(nsf, k_max)
    highest = hubness_stats.highest_occurrences(nsf, NUM_HIGHEST_OCCURRENCES, k_max)
    top_hubs = {size: hubness_stats.top_hubs_cluster(nsf, size, k_max) for size in TOP_HUB_SIZES}
    matrices = hubness_stats.class_to_class_matrices(nsf, k_max)
    print(f"    → Explorers complete in {time.time() - start_time:.2f}s.")

    rows: List[Dict[str, Any]] = []
    for k in range(1, k_max + 1):
        row = {
            'Dataset': dataset.name,
            'Metric': metric_name,
            'K': k,
            'Size': dataset.size(),
            'Num_Classes': dataset.count_categories(),
            'Occ_Stdev': stdevs[k - 1],
            'Occ_Skewness': moments['skewness'][k - 1],
            'Occ_Kurtosis': moments['kurtosis'][k - 1],
            'Label_Mismatch': mismatch[k - 1],
            'Hubs_Fraction': fractions['hubs'][k - 1],
            'Orphans_Fraction': fractions['orphans'][k - 1],
            'Regulars_Fraction': fractions['regulars'][k - 1],
            'Max_Occurrence': highest['scores'][k - 1][0],
            'Highest_Occurrences': ';'.join(str(int(v)) for v in highest['scores'][k - 1]),
        }
        for key, values in entropies.items():
            row[f'Entropy_{key}'] = values[k - 1]
        for t_index, threshold in enumerate(THRESHOLDS):
            row[f'Perc_Occ_AtLeast_{threshold}'] = at_least[t_index, k - 1]
        for size, measures in top_hubs.items():
            row[f'Top{size}_Hubs_Diameter'] = measures['diameter'][k - 1]
            row[f'Top{size}_Hubs_AvgDist'] = measures['avg_distance'][k - 1]
        rows.append(row)

    class_rows: List[Dict[str, Any]] = []
    for k, matrix in enumerate(matrices, start=1):
        for query_class in range(matrix.shape[0]):
            for neighbor_class in range(matrix.shape[1]):
                class_rows.append({
                    'Dataset': dataset.name,
                    'Metric': metric_name,
                    'K': k,
                    'Query_Class': query_class,
                    'Neighbor_Class': neighbor_class,
                    'Fuzzy_Occurrence': matrix[query_class, neighbor_class],
                })

    return {'rows': rows, 'class_to_class': class_rows}


def run_hubness_batch():
    """
    Main runner for the batch hubness analysis.
    """
    all_results: List[Dict[str, Any]] = []
    all_class_results: List[Dict[str, Any]] = []

    for file_name, class_column in DATASETS.items():
        print(f"\n{'=' * 80}")
        print(f"[Batch Runner] Processing Dataset: {file_name}")
        print(f"  Metrics: {', '.join(METRICS)}, k_max={K_MAX}, threads={NUM_THREADS}")
        print(f"{'=' * 80}\n")

        try:
            dataset = load_dataset(DATA_DIR / file_name, class_column)
        except Exception as e:
            print(f"  [Batch Runner] Could not load {file_name}: {e}. Skipping.")
            continue

        for metric_name in METRICS:
            print(f"\n  --- Metric: {metric_name} ---")
            try:
                analysis = analyze_dataset(dataset, metric_name)
            except Exception as e:
                print(f"  [Batch Runner] Error on {dataset.name} ({metric_name}): {e}")
                import traceback

                traceback.print_exc()
                continue
            all_results.extend(analysis['rows'])
            all_class_results.extend(analysis['class_to_class'])

    if not all_results:
        print("\n[Batch Runner] No results were produced.")
        return pd.DataFrame(), pd.DataFrame()

    # --- Save final results ---
    results_df = pd.DataFrame(all_results)
    class_df = pd.DataFrame(all_class_results)

    summary_df = results_df.groupby(['Dataset', 'Metric']).agg({
        'Occ_Skewness': ['mean', 'max'],
        'Label_Mismatch': ['mean', 'max'],
        'Hubs_Fraction': ['mean'],
    }).reset_index()

    summary_df.columns = [
        'Dataset', 'Metric',
        'Mean_Skewness', 'Max_Skewness',
        'Mean_Label_Mismatch', 'Max_Label_Mismatch',
        'Mean_Hubs_Fraction'
    ]

    # Save CSVs
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    per_k_file = RESULTS_DIR / f'hubness_per_k_results_{timestamp}.csv'
    class_file = RESULTS_DIR / f'hubness_class_to_class_{timestamp}.csv'
    summary_file = RESULTS_DIR / f'hubness_summary_{timestamp}.csv'

    results_df.to_csv(per_k_file, index=False)
    class_df.to_csv(class_file, index=False)
    summary_df.to_csv(summary_file, index=False)

    print(f"\n[Batch Runner] Saved per-k results to: {per_k_file.relative_to(PROJECT_ROOT)}")
    print(f"[Batch Runner] Saved class-to-class matrices to: {class_file.relative_to(PROJECT_ROOT)}")
    print(f"[Batch Runner] Saved summary results to: {summary_file.relative_to(PROJECT_ROOT)}\n")

    # Display summary
    print(f"{'-' * 80}")
    print("Hubness Batch Summary (over k = 1..k_max)")
    print(f"{'-' * 80}")
    print(f"  {'Dataset':<14} | {'Metric':<10} | "
          f"{'Skew (mean/max)':<18} | {'Mismatch (mean/max)':<20} | {'Hubs %':<8}")
    print(f"  {'-' * 80}")
    for _, row in summary_df.iterrows():
        skew_str = f"{row['Mean_Skewness']:.3f}/{row['Max_Skewness']:.3f}"
        mismatch_str = f"{row['Mean_Label_Mismatch']:.3f}/{row['Max_Label_Mismatch']:.3f}"
        hubs_str = f"{row['Mean_Hubs_Fraction'] * 100:.1f}"
        print(f"  {row['Dataset'].upper():<14} | {row['Metric']:<10} | "
              f"{skew_str:<18} | {mismatch_str:<20} | {hubs_str:<8}")
    print(f"{'-' * 80}\n")

    return results_df, summary_df


# --- Main execution ---
if __name__ == "__main__":
    print("\n--- Batch Hubness Analysis Runner ---")
    try:
        run_hubness_batch()
        print("\n[Batch Runner] All datasets processed.")
    except KeyboardInterrupt:
        print(f"\n[Batch Runner] Analysis interrupted by user.")
        print(f"Cached distance matrices are kept in '{DMAT_CACHE_DIR}'.")
    except Exception as e:
        print(f"\n[Batch Runner] An error occurred: {e}")
        import traceback

        traceback.print_exc()
