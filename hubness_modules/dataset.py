"""
This file contains the dataset abstraction consumed by the hubness engine
and the loaders that produce it from .arff and .csv files:
- A DataSet class (features, integer labels, noise marker -1).
- Loading .arff files (scipy) and .csv files (pandas) into DataFrames.
- Imputing missing values (median for numeric, mode for categorical).
- Label encoding categorical features and the class column.
- Normalizing numeric features to a [0, 1] range.
"""

from pathlib import Path
from scipy.io import arff
import pandas as pd
import numpy as np
from sklearn.preprocessing import LabelEncoder
from sklearn.preprocessing import MinMaxScaler
from typing import Dict, List, Optional, Sequence, Tuple, Union

from hubness_modules.errors import ConfigurationError, DataAvailabilityError

NOISE_LABEL = -1


class DataSet:
    """
    An ordered, indexable collection of N instances.

    Each instance has a numeric feature vector and an integer class label.
    Label -1 marks noise/unknown; a dataset without labels at all is also
    allowed (unsupervised use): such points are not noise, they simply
    have no class and are ignored by the class-aware statistics.
    """

    def __init__(self, X: Optional[np.ndarray] = None, y: Optional[Sequence[int]] = None,
                 name: str = 'dataset'):
        if X is None and y is None:
            raise ConfigurationError("A DataSet needs features, labels, or both.")
        self.X: Optional[np.ndarray] = None if X is None else np.asarray(X, dtype=float)
        if self.X is not None and self.X.ndim == 1:
            self.X = self.X.reshape(-1, 1)
        self.y: Optional[np.ndarray] = None if y is None else np.asarray(y, dtype=int)
        self.name: str = name

        if self.X is not None and self.y is not None and len(self.X) != len(self.y):
            raise ConfigurationError(
                f"Feature rows ({len(self.X)}) and labels ({len(self.y)}) differ in length.")

    def size(self) -> int:
        return len(self.X) if self.X is not None else len(self.y)

    def __len__(self) -> int:
        return self.size()

    def is_empty(self) -> bool:
        return self.size() == 0

    def has_labels(self) -> bool:
        return self.y is not None

    def has_features(self) -> bool:
        return self.X is not None

    def get_instance(self, i: int) -> np.ndarray:
        if self.X is None:
            raise DataAvailabilityError("No feature vectors in this dataset.", dataset=self.name)
        return self.X[i]

    def get_label_of(self, i: int) -> int:
        if self.y is None:
            return NOISE_LABEL
        return int(self.y[i])

    def get_labels(self) -> np.ndarray:
        """Returns the label array; -1 everywhere when the dataset is unlabeled."""
        if self.y is None:
            return np.full(self.size(), NOISE_LABEL, dtype=int)
        return self.y

    def is_noise(self, i: int) -> bool:
        return bool(self.get_noise_mask()[i])

    def get_noise_mask(self) -> np.ndarray:
        """Labeled points with label -1 are noise; unlabeled data has no noise."""
        if self.y is None:
            return np.zeros(self.size(), dtype=bool)
        return self.y < 0

    def count_categories(self) -> int:
        """Number of classes, taken as max label + 1 (labels are dense 0..C-1)."""
        if self.y is None or len(self.y) == 0:
            return 0
        max_label = int(self.y.max())
        return max_label + 1 if max_label >= 0 else 0

    def get_class_frequencies(self) -> np.ndarray:
        num_classes = self.count_categories()
        labels = self.get_labels()
        return np.bincount(labels[labels >= 0], minlength=num_classes)

    def get_class_indexes(self) -> List[np.ndarray]:
        """Indices of the members of each class, in index order."""
        labels = self.get_labels()
        return [np.flatnonzero(labels == c) for c in range(self.count_categories())]

    def min_class_size(self) -> int:
        freqs = self.get_class_frequencies()
        return int(freqs.min()) if len(freqs) > 0 else 0

    def count_present_classes(self) -> int:
        return int(np.count_nonzero(self.get_class_frequencies()))

    def subsample(self, indices: Sequence[int]) -> 'DataSet':
        """A new DataSet with the given rows, in the order given."""
        indices = np.asarray(indices, dtype=int)
        X = None if self.X is None else self.X[indices]
        y = None if self.y is None else self.y[indices]
        return DataSet(X, y, name=self.name)


# -----------------------------------------------------------------
#  File loading and preprocessing
# -----------------------------------------------------------------

def load_arff(filepath: Union[str, Path]) -> pd.DataFrame:
    """
    Loads an .arff file from the given path into a pandas DataFrame.

    Also decodes object-type columns (which scipy loads as bytes)
    into 'utf-8' strings.
    """
    data, meta = arff.loadarff(str(filepath))
    df = pd.DataFrame(data)

    for col in df.columns:
        if df[col].dtype == object:
            df[col] = df[col].str.decode('utf-8')
            # scipy marks missing nominal values with '?'
            df[col] = df[col].replace('?', np.nan)

    return df


def load_csv(filepath: Union[str, Path]) -> pd.DataFrame:
    """Loads a .csv file with a header row; '?' is read as missing."""
    return pd.read_csv(filepath, na_values=['?'])


def identify_column_types(df: pd.DataFrame, class_column: Optional[str]) -> Tuple[List[str], List[str]]:
    """
    Separates features into numeric and categorical lists,
    excluding the class column.
    """
    feature_columns = [col for col in df.columns if col != class_column]

    numeric_cols = []
    categorical_cols = []

    for col in feature_columns:
        if pd.api.types.is_numeric_dtype(df[col]):
            numeric_cols.append(col)
        else:
            categorical_cols.append(col)

    return numeric_cols, categorical_cols


def handle_missing_values(df: pd.DataFrame, numeric_cols: List[str], categorical_cols: List[str]) -> pd.DataFrame:
    """
    Imputes missing values in the DataFrame.
    - Numeric: Uses median.
    - Categorical: Uses mode (most frequent value).
    """
    df = df.copy()

    for col in numeric_cols:
        if df[col].isnull().any():
            df[col] = df[col].fillna(df[col].median())

    for col in categorical_cols:
        if df[col].isnull().any():
            df[col] = df[col].fillna(df[col].mode()[0])

    return df


def preprocess_frame(df: pd.DataFrame, class_column: Optional[str] = None,
                     name: str = 'dataset') -> Tuple[DataSet, Dict[str, LabelEncoder]]:
    """
    Turns a raw DataFrame into a DataSet.

    The class column defaults to the last column. Rows with a missing
    class become noise (label -1). Categorical features are label encoded,
    numeric features are scaled to [0, 1].
    """
    if class_column is None:
        class_column = df.columns[-1]
    if class_column not in df.columns:
        raise ConfigurationError(f"Class column '{class_column}' not found.", dataset=name)

    numeric_cols, categorical_cols = identify_column_types(df, class_column)
    df = handle_missing_values(df, numeric_cols, categorical_cols)
    encoders: Dict[str, LabelEncoder] = {}

    for col in categorical_cols:
        encoder = LabelEncoder()
        df[col] = encoder.fit_transform(df[col].astype(str))
        encoders[col] = encoder

    if numeric_cols:
        scaler = MinMaxScaler(feature_range=(0, 1))
        df[numeric_cols] = scaler.fit_transform(df[numeric_cols])

    class_values = df[class_column]
    known = class_values.notnull().to_numpy()
    y = np.full(len(df), NOISE_LABEL, dtype=int)
    class_encoder = LabelEncoder()
    if known.any():
        y[known] = class_encoder.fit_transform(class_values[known].astype(str))
    encoders[class_column] = class_encoder

    X = df.drop(columns=[class_column]).to_numpy(dtype=float)
    return DataSet(X, y, name=name), encoders


def load_dataset(filepath: Union[str, Path], class_column: Optional[str] = None) -> DataSet:
    """
    Loads and preprocesses an .arff or .csv file into a DataSet,
    dispatching on the file extension.
    """
    path = Path(filepath)
    if not path.exists():
        raise DataAvailabilityError(f"Data file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == '.arff':
        df = load_arff(path)
    elif suffix == '.csv':
        df = load_csv(path)
    else:
        raise ConfigurationError(f"Unsupported data file format: {suffix}", path=str(path))

    print(f"[Parser] Loaded {path.name}: {len(df)} rows, {len(df.columns)} columns.")
    dataset, _ = preprocess_frame(df, class_column, name=path.stem)
    return dataset
