"""Matrix file import/export.

This module provides helpers for loading matrix definitions from YAML/JSON
files and exporting matrices (including the built-in one) back to files.
"""

import json
from pathlib import Path
from typing import Any

import yaml

from crossmatrix.profiles.schema import MatrixSchema


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed JSON content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the document is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_matrix_data(data: dict[str, Any]) -> MatrixSchema:
    """Parse and validate matrix data.

    Args:
        data: Dictionary containing matrix data.

    Returns:
        Validated MatrixSchema instance.

    Raises:
        pydantic.ValidationError: If data does not match schema.
    """
    return MatrixSchema.model_validate(data)


def load_matrix(path: Path) -> MatrixSchema:
    """Load and validate a matrix from a file (YAML or JSON).

    File format is determined by extension. A relative ``project.source_dir``
    is resolved against the directory containing the matrix file.

    Args:
        path: Path to the matrix file.

    Returns:
        Validated MatrixSchema instance.

    Raises:
        ValueError: If file extension is not supported.
        FileNotFoundError: If the file does not exist.
        pydantic.ValidationError: If data does not match schema.
    """
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = load_yaml(path)
    elif suffix == ".json":
        data = load_json(path)
    else:
        raise ValueError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
        )

    project = data.get("project")
    if isinstance(project, dict):
        source_dir = Path(project.get("source_dir", "."))
        if not source_dir.is_absolute():
            project["source_dir"] = str((path.parent / source_dir).resolve())

    return parse_matrix_data(data)


def matrix_to_dict(matrix: MatrixSchema) -> dict[str, Any]:
    """Convert a matrix into plain data suitable for YAML/JSON."""
    return matrix.model_dump(mode="json", exclude_none=True)


def export_matrix(matrix: MatrixSchema, path: Path) -> None:
    """Export a matrix to a file (YAML or JSON).

    Args:
        matrix: MatrixSchema instance to export.
        path: Path where the file should be written.

    Raises:
        ValueError: If file extension is not supported.
    """
    data = matrix_to_dict(matrix)
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(
                data, f, default_flow_style=False, allow_unicode=True, sort_keys=False
            )
    elif suffix == ".json":
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
    else:
        raise ValueError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
        )


__all__ = [
    "export_matrix",
    "load_json",
    "load_matrix",
    "load_yaml",
    "matrix_to_dict",
    "parse_matrix_data",
]
