"""
This script compares how well the prototypes picked by each instance
selector preserve the hubness structure of the full data.

It does the following:
1.  Loads every dataset and its (cached) distance matrix.
2.  Computes the kNN sets of the full data for k = K and records its
    occurrence skewness, bad hubness rate and hubs (occ >= k + 2 sigma,
    sigma measured around k).
3.  For every selector in SELECTORS:
    a. Selects the prototypes and times the selection.
    b. Estimates the prototype hubness "through the data": prototype
       occurrences in the kNN sets of all points, drawn from the
       prototypes only.
    c. Estimates it "within the prototypes": kNN sets computed on the
       prototype subset alone.
    d. Compares the two: Pearson correlations (scipy) of the occurrence,
       bad occurrence and fuzzy class hubness arrays, the bad hubness
       rates, the pointwise bad hubness rate error, both skewness values
       and the fraction of the full-data hubs kept among the prototypes.
4.  Saves the results and a summary as timestamped CSVs.
"""

# --- Path Setup ---
from pathlib import Path
import sys
from typing import Any, Dict, List, Optional

# Define paths
try:
    # This works when run as a script
    SCRIPT_DIR = Path(__file__).resolve().parent
except NameError:
    # Fallback for interactive/notebook use
    SCRIPT_DIR = Path.cwd()

PROJECT_ROOT = SCRIPT_DIR.parent
DATA_DIR = PROJECT_ROOT / 'data' / 'datasets'
RESULTS_DIR = PROJECT_ROOT / 'results' / 'reducer_hubness'
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
from scipy import stats

# --- Import Project Modules ---
try:
    from hubness_modules.dataset import DataSet, load_dataset
    from hubness_modules.distances import get_metric
    from hubness_modules.distance_matrix import DistanceMatrix
    from hubness_modules.neighbor_sets import NeighborSetFinder
    from hubness_modules.hubness_stats import higher_moments
    from hubness_modules.instance_selectors import SELECTORS, InstanceSelector
except ImportError as exc:
    print(f"Error: Could not import project modules (dataset, neighbor_sets, instance_selectors, etc.)")
    print(f"Ensure they are in the project root directory: {PROJECT_ROOT}")
    raise

# --- Experiment Configuration ---

DATASETS: Dict[str, Any] = {
    'iris.arff': None,
    'wine.arff': None,
    'segment.arff': None,
}

METRIC = 'Manhattan'
K = 5
NUM_THREADS = 4
RANDOM_STATE = 42
CLASS_LAPLACE = 0.01

# Selector name -> constructor keyword arguments
SELECTOR_CONFIGS: Dict[str, Dict[str, Any]] = {
    'Random': {'fraction': 0.2},
    'Wilson72': {},
    'CNN': {},
    'GCNN': {'rho': 0.99},
    'ENRBF': {'alpha': 0.9},
    'HMScore': {'k_hm': 1},
    'Carving': {'k_hm': 1},
    'ICF': {},
    'INSIGHT': {},
    'RNNR': {},
    'IPT_RT3': {},
}

# Measures that need kNN sets within the prototype subset
WITHIN_METRICS = ['Hubness_Corr', 'Bad_Hubness_Corr', 'Avg_Class_Hubness_Corr',
                  'Proto_Bad_Hubness_Reduced', 'Pointwise_Bad_Hubness_Error',
                  'Proto_Skewness_Reduced']


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


def _pearson(first: np.ndarray, second: np.ndarray) -> float:
    """Pearson correlation, NaN when either array is constant or too short."""
    first = np.asarray(first, dtype=float)
    second = np.asarray(second, dtype=float)
    if len(first) < 2 or np.std(first) == 0 or np.std(second) == 0:
        return float('nan')
    return float(stats.pearsonr(first, second)[0])


def _bad_rates(bad: np.ndarray, total: np.ndarray) -> np.ndarray:
    rates = np.zeros(len(total), dtype=float)
    occurring = total > 0
    rates[occurring] = bad[occurring] / total[occurring]
    return rates


def _fuzzy_class_relation(finder: NeighborSetFinder, num_classes: int) -> np.ndarray:
    relation = finder.get_class_data_neighbor_relation().astype(float)
    labeled = np.flatnonzero(finder.labels >= 0)
    relation[finder.labels[labeled], labeled] += 1
    occ = finder.get_neighbor_frequencies()
    return (relation + CLASS_LAPLACE) / (occ + 1 + num_classes * CLASS_LAPLACE)


def evaluate_selector(selector: InstanceSelector, nsf: NeighborSetFinder,
                      hubs: np.ndarray) -> Dict[str, Optional[float]]:
    """
    Compares the prototype hubness seen through the full data with the
    hubness inside the prototype subset alone.
    """
    protos = selector.prototype_indexes
    num_protos = len(protos)
    num_classes = selector.num_classes
    selector.calculate_prototype_hubness(K)

    within_k = min(K, num_protos - 1)
    metrics: Dict[str, Optional[float]] = {key: float('nan') for key in WITHIN_METRICS}
    metrics.update({
        'Num_Prototypes': num_protos,
        'Proto_Bad_Hubness_True': selector.proto_bad_hubness.sum() / (nsf.size * K),
        'Proto_Skewness_True': higher_moments(selector.proto_hubness)['skewness'],
        'Retained_Hubs_Fraction': (float(np.isin(hubs, protos).sum()) / len(hubs)
                                   if len(hubs) > 0 else float('nan')),
    })
    if within_k < 1:
        print(f"      Too few prototypes ({num_protos}) for kNN sets within the prototypes.")
        return metrics

    within = nsf.restrict_to(protos)
    within.calculate_neighbor_sets(within_k)
    within_occ = within.get_neighbor_frequencies()
    within_bad = within.get_bad_frequencies()

    true_relation = selector.get_class_data_neighbor_relation_fuzzy(CLASS_LAPLACE)
    within_relation = _fuzzy_class_relation(within, num_classes)
    class_corrs = np.array([_pearson(within_relation[c], true_relation[c]) for c in range(num_classes)])

    pointwise_error = np.abs(_bad_rates(within_bad, within_occ)
                             - _bad_rates(selector.proto_bad_hubness, selector.proto_hubness))

    metrics.update({
        'Hubness_Corr': _pearson(within_occ, selector.proto_hubness),
        'Bad_Hubness_Corr': _pearson(within_bad, selector.proto_bad_hubness),
        'Avg_Class_Hubness_Corr': (float(np.nanmean(class_corrs))
                                   if not np.all(np.isnan(class_corrs)) else float('nan')),
        'Proto_Bad_Hubness_Reduced': within_bad.sum() / (num_protos * within_k),
        'Pointwise_Bad_Hubness_Error': float(pointwise_error.mean()),
        'Proto_Skewness_Reduced': higher_moments(within_occ)['skewness'],
    })
    return metrics


def run_reducer_experiments():
    """
    Main runner for the selector hubness comparison.
    """
    all_results: List[Dict[str, Any]] = []

    for file_name, class_column in DATASETS.items():
        print(f"\n{'=' * 80}")
        print(f"[Reducer Runner] Processing Dataset: {file_name}")
        print(f"  Using: k={K}, metric={METRIC}, selectors={', '.join(SELECTOR_CONFIGS)}")
        print(f"{'=' * 80}\n")

        try:
            dataset = load_dataset(DATA_DIR / file_name, class_column)
            dist_matrix = get_distance_matrix(dataset)
            nsf = NeighborSetFinder(dataset, dist_matrix, get_metric(METRIC), NUM_THREADS)
            nsf.calculate_neighbor_sets(K)
        except Exception as e:
            print(f"  [Reducer Runner] Could not prepare {file_name}: {e}. Skipping.")
            continue

        hubs = nsf.get_hub_indexes()
        data_skewness = nsf.get_hubness_skewness()
        data_bad_perc = nsf.get_bad_frequencies().sum() / (nsf.size * K)
        print(f"  Occurrence skewness: {data_skewness:.3f}, bad hubness: {data_bad_perc:.3f}, "
              f"hubs: {len(hubs)}")

        for selector_name, kwargs in SELECTOR_CONFIGS.items():
            print(f"\n  --- Selector: {selector_name} ---")
            try:
                selector = SELECTORS[selector_name](nsf, random_state=RANDOM_STATE, **kwargs)
                start_time = time.time()
                selector.reduce_data_set()
                selection_time = time.time() - start_time
                metrics = evaluate_selector(selector, nsf, hubs)
            except Exception as e:
                print(f"  [Reducer Runner] {selector_name} failed on {dataset.name}: {e}")
                import traceback

                traceback.print_exc()
                continue

            print(f"      → {metrics['Num_Prototypes']} prototypes in {selection_time:.2f}s, "
                  f"hubness corr={metrics.get('Hubness_Corr', float('nan')):.3f}")

            result = {
                'Dataset': dataset.name,
                'Selector': selector_name,
                'K': K,
                'Metric': METRIC,
                'Data_Size': dataset.size(),
                'Data_Skewness': data_skewness,
                'Data_Bad_Hubness': data_bad_perc,
                'Selection_Time_s': selection_time,
                'Storage_percent': metrics['Num_Prototypes'] / dataset.size() * 100.0,
                **metrics,
            }
            all_results.append(result)

    if not all_results:
        print("\n[Reducer Runner] No results were produced.")
        return pd.DataFrame(), pd.DataFrame()

    # --- Save final results ---
    results_df = pd.DataFrame(all_results)

    summary_df = results_df.groupby(['Selector']).agg({
        'Storage_percent': ['mean', 'std'],
        'Hubness_Corr': ['mean', 'std'],
        'Pointwise_Bad_Hubness_Error': ['mean', 'std'],
    }).reset_index()

    summary_df.columns = [
        'Selector',
        'Mean_Storage_pct', 'Std_Storage_pct',
        'Mean_Hubness_Corr', 'Std_Hubness_Corr',
        'Mean_BH_Error', 'Std_BH_Error'
    ]

    # Save CSVs
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    detail_file = RESULTS_DIR / f'reducer_hubness_results_{timestamp}.csv'
    summary_file = RESULTS_DIR / f'reducer_hubness_summary_{timestamp}.csv'

    results_df.to_csv(detail_file, index=False)
    summary_df.to_csv(summary_file, index=False)

    print(f"\n[Reducer Runner] Saved detailed results to: {detail_file.relative_to(PROJECT_ROOT)}")
    print(f"[Reducer Runner] Saved summary results to: {summary_file.relative_to(PROJECT_ROOT)}\n")

    # Display summary
    print(f"{'-' * 80}")
    print("Selector Hubness Preservation Summary (mean ± std over datasets)")
    print(f"{'-' * 80}")
    print(f"  {'Selector':<10} | {'Storage %':<14} | {'Hubness corr':<16} | {'BH error':<16}")
    print(f"  {'-' * 80}")
    for _, row in summary_df.iterrows():
        storage_str = f"{row['Mean_Storage_pct']:.1f}±{row['Std_Storage_pct']:.1f}"
        corr_str = f"{row['Mean_Hubness_Corr']:.3f}±{row['Std_Hubness_Corr']:.3f}"
        error_str = f"{row['Mean_BH_Error']:.3f}±{row['Std_BH_Error']:.3f}"
        print(f"  {row['Selector']:<10} | {storage_str:<14} | {corr_str:<16} | {error_str:<16}")
    print(f"{'-' * 80}\n")

    return results_df, summary_df


# --- Main execution ---
if __name__ == "__main__":
    print("\n--- Instance Selection Hubness Runner ---")
    try:
        run_reducer_experiments()
        print("\n[Reducer Runner] All selector experiments completed successfully.")
    except KeyboardInterrupt:
        print(f"\n[Reducer Runner] Experiment interrupted by user.")
        print(f"Partial results may be saved in '{RESULTS_DIR}'.")
    except Exception as e:
        print(f"\n[Reducer Runner] An error occurred: {e}")
        import traceback

        traceback.print_exc()
