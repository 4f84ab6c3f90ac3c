"""
This script evaluates K-Means clusterings with the clustering quality
indices.

It does the following:
1.  Loads every dataset and its (cached) distance matrix.
2.  For each number of clusters in CLUSTER_COUNTS and each random seed:
    a. Runs K-Means (scikit-learn) to get the cluster associations.
    b. Evaluates every index in QUALITY_INDICES on its own thread
       (joblib); all threads are joined before any failure is reported.
3.  Saves the index values and their means per K as timestamped CSVs.

A failing index fails its clustering; the error is printed and the
runner moves on to the next clustering and dataset.
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
RESULTS_DIR = PROJECT_ROOT / 'results' / 'clustering_quality'
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
from sklearn.cluster import KMeans

# --- Import Project Modules ---
try:
    from hubness_modules.dataset import DataSet, load_dataset
    from hubness_modules.distances import get_metric
    from hubness_modules.distance_matrix import DistanceMatrix
    from hubness_modules.errors import ComputeWorkerError
    from hubness_modules.parallel import run_tasks
    from hubness_modules.quality_indices import QUALITY_INDICES
except ImportError as exc:
    print(f"Error: Could not import project modules (dataset, quality_indices, parallel, etc.)")
    print(f"Ensure they are in the project root directory: {PROJECT_ROOT}")
    raise

# --- Experiment Configuration ---

DATASETS: Dict[str, Any] = {
    'iris.arff': None,
    'wine.arff': None,
    'segment.arff': None,
}

METRIC = 'Euclidean'
CLUSTER_COUNTS: List[int] = [2, 3, 5, 8]
SEEDS: List[int] = [0, 1, 2]
NUM_THREADS = len(QUALITY_INDICES)

# Extra constructor arguments for the indices that need them
INDEX_OPTIONS: Dict[str, Dict[str, Any]] = {
    'SD': {'alpha': 1.0},
    'Isolation': {'k': 5},
}


# -----------------------------


def get_distance_matrix(dataset: DataSet) -> DistanceMatrix:
    """Loads the cached distance matrix of the dataset, or computes and caches it."""
    cache_file = DMAT_CACHE_DIR / f"{dataset.name}_{METRIC}.dmat"
    if cache_file.exists():
        dist_matrix = DistanceMatrix.load(cache_file)
        if dist_matrix.size == dataset.size():
            return dist_matrix
    dist_matrix = DistanceMatrix.compute(dataset.X, get_metric(METRIC), NUM_THREADS)
    dist_matrix.save(cache_file)
    return dist_matrix


def evaluate_clustering(associations: np.ndarray, dataset: DataSet,
                        dist_matrix: DistanceMatrix) -> Dict[str, float]:
    """Evaluates every quality index on one clustering, one thread per index."""
    metric = get_metric(METRIC)
    # Built before the threads start so they only read it
    dist_matrix.to_square()
    names = list(QUALITY_INDICES)
    tasks = []
    for name in names:
        index = QUALITY_INDICES[name](associations, dataset, dist_matrix, metric,
                                      **INDEX_OPTIONS.get(name, {}))
        tasks.append(index.validity)
    values = run_tasks(tasks, NUM_THREADS, labels=names)
    return dict(zip(names, values))


def run_clustering_experiments():
    """
    Main runner for the clustering quality experiments.
    """
    all_results: List[Dict[str, Any]] = []

    for file_name, class_column in DATASETS.items():
        print(f"\n{'=' * 80}")
        print(f"[Cluster Runner] Processing Dataset: {file_name}")
        print(f"  K values: {CLUSTER_COUNTS}, seeds: {SEEDS}, indices: {len(QUALITY_INDICES)}")
        print(f"{'=' * 80}\n")

        try:
            dataset = load_dataset(DATA_DIR / file_name, class_column)
            dist_matrix = get_distance_matrix(dataset)
        except Exception as e:
            print(f"  [Cluster Runner] Could not prepare {file_name}: {e}. Skipping.")
            continue

        for num_clusters in CLUSTER_COUNTS:
            if num_clusters >= dataset.size():
                print(f"  Skipping K={num_clusters}: not enough points.")
                continue
            for seed in SEEDS:
                print(f"  [Quality] K={num_clusters}, seed={seed}...")
                try:
                    kmeans = KMeans(n_clusters=num_clusters, random_state=seed, n_init=10)
                    associations = kmeans.fit_predict(dataset.X)
                    start_time = time.time()
                    values = evaluate_clustering(associations, dataset, dist_matrix)
                    eval_time = time.time() - start_time
                except ComputeWorkerError as e:
                    print(f"  [Cluster Runner] Index failure on {dataset.name} (K={num_clusters}): {e}")
                    print(f"    Failed indices: {e.additional_info.get('failed_tasks')}")
                    continue
                except Exception as e:
                    print(f"  [Cluster Runner] Error on {dataset.name} (K={num_clusters}): {e}")
                    import traceback

                    traceback.print_exc()
                    continue

                print(f"    → {len(values)} indices in {eval_time:.2f}s. "
                      f"Dunn={values.get('Dunn', float('nan')):.4f}")
                all_results.append({
                    'Dataset': dataset.name,
                    'K': num_clusters,
                    'Seed': seed,
                    'Metric': METRIC,
                    'Eval_Time_s': eval_time,
                    **values,
                })

    if not all_results:
        print("\n[Cluster Runner] No results were produced.")
        return pd.DataFrame(), pd.DataFrame()

    # --- Save final results ---
    results_df = pd.DataFrame(all_results)
    index_columns = [name for name in QUALITY_INDICES if name in results_df.columns]
    summary_df = results_df.groupby(['Dataset', 'K'])[index_columns].mean().reset_index()

    # Save CSVs
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    detail_file = RESULTS_DIR / f'clustering_quality_results_{timestamp}.csv'
    summary_file = RESULTS_DIR / f'clustering_quality_summary_{timestamp}.csv'

    results_df.to_csv(detail_file, index=False)
    summary_df.to_csv(summary_file, index=False)

    print(f"\n[Cluster Runner] Saved detailed results to: {detail_file.relative_to(PROJECT_ROOT)}")
    print(f"[Cluster Runner] Saved summary results to: {summary_file.relative_to(PROJECT_ROOT)}\n")

    # Display summary
    shown = [name for name in ['Dunn', 'DaviesBouldin', 'Silhouette', 'Rand'] if name in index_columns]
    print(f"{'-' * 80}")
    print("Clustering Quality Summary (mean over seeds, higher is better)")
    print(f"{'-' * 80}")
    print(f"  {'Dataset':<14} | {'K':<3} | " + " | ".join(f"{name:<14}" for name in shown))
    print(f"  {'-' * 80}")
    for _, row in summary_df.iterrows():
        values_str = " | ".join(f"{row[name]:<14.4f}" for name in shown)
        print(f"  {row['Dataset'].upper():<14} | {int(row['K']):<3} | {values_str}")
    print(f"{'-' * 80}\n")

    return results_df, summary_df


# --- Main execution ---
if __name__ == "__main__":
    print("\n--- Clustering Quality Index Runner ---")
    try:
        run_clustering_experiments()
        print("\n[Cluster Runner] All clustering evaluations completed.")
    except KeyboardInterrupt:
        print(f"\n[Cluster Runner] Experiment interrupted by user.")
        print(f"Partial results may be saved in '{RESULTS_DIR}'.")
    except Exception as e:
        print(f"\n[Cluster Runner] An error occurred: {e}")
        import traceback

        traceback.print_exc()
