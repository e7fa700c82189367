"""CSV loader for practice record fixtures."""

import pandas as pd
import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional


DEFAULT_SCHEMA_PATH = Path(__file__).parent.parent / "config" / "practice_schema.yaml"


def load_practice_schema(schema_path: Optional[str] = None) -> Dict[str, dict]:
    """
    Load the practice table layout.

    Args:
        schema_path: Path to practice_schema.yaml (defaults to config/)

    Returns:
        Mapping of entity name to its table description
    """
    path = Path(schema_path) if schema_path else DEFAULT_SCHEMA_PATH
    with open(path, 'r') as f:
        return yaml.safe_load(f) or {}


class PracticeCSVLoader:
    """Load and clean practice CSV tables with proper typing."""

    def __init__(self, schema_path: Optional[str] = None):
        """
        Initialize CSV loader.

        Args:
            schema_path: Path to practice_schema.yaml config
        """
        self.schema = load_practice_schema(schema_path)

    @property
    def entities(self) -> List[str]:
        return list(self.schema.keys())

    def load_table(self, fixture_dir: str, entity: str) -> pd.DataFrame:
        """
        Load one entity table from a fixture directory.

        Missing files load as an empty table with the declared columns.

        Args:
            fixture_dir: Directory holding the CSV files
            entity: Entity name, e.g. "patients"

        Returns:
            Cleaned DataFrame
        """
        if entity not in self.schema:
            raise ValueError(f"Unknown practice entity: {entity}")

        table = self.schema[entity]
        csv_path = Path(fixture_dir) / table["file"]

        if not csv_path.exists():
            return pd.DataFrame(columns=table.get("fields", []))

        dtypes = {field: str for field in table.get("string_columns", [])}
        df = pd.read_csv(csv_path, encoding="utf-8", dtype=dtypes)
        return self._clean_dataframe(df, table)

    def load_all(self, fixture_dir: str) -> Dict[str, pd.DataFrame]:
        """Load every entity table declared in the schema."""
        return {entity: self.load_table(fixture_dir, entity) for entity in self.schema}

    def _clean_dataframe(self, df: pd.DataFrame, table: dict) -> pd.DataFrame:
        """
        Clean DataFrame with normalization rules.

        Args:
            df: Raw DataFrame
            table: Table description from the schema

        Returns:
            Cleaned DataFrame
        """
        df = df.copy()
        df = self._normalize_nulls(df)

        for field in table.get("date_columns", []):
            if field in df.columns:
                df[field] = pd.to_datetime(df[field], errors='coerce').dt.date

        for field in table.get("bool_columns", []):
            if field in df.columns:
                df[field] = self._parse_boolean(df[field])

        # Keep missing values as None so records validate cleanly
        df = df.astype(object).where(pd.notna(df), None)
        return df

    def _normalize_nulls(self, df: pd.DataFrame) -> pd.DataFrame:
        """Normalize null values."""
        null_values = ["Null", "null", "NULL", "", "nan", "NaN", "NAN"]
        return df.replace({value: None for value in null_values})

    def _parse_boolean(self, series: pd.Series) -> pd.Series:
        """Parse boolean values."""
        def to_bool(val: Any) -> bool:
            if val is None or (not isinstance(val, str) and pd.isna(val)):
                return False
            if isinstance(val, bool):
                return val
            if isinstance(val, str):
                return val.lower().strip() in ['true', 't', 'yes', 'y', '1']
            return bool(val)

        return series.apply(to_bool)
