"""
Regrid run configuration.

A RegridConfig can be built from command-line options, loaded from a YAML
file, or both (command-line values win). Example YAML:

    input_format: gbptrees
    input_path: snapshots/grids_099.bin
    output_path: snapshots/grids_099_128.bin
    new_dim: 128
    filter_type: real_top_hat
    radius_factor: 0.5
    n_threads: 8
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from regrider.errors import ConfigurationError
from regrider.kernels import FilterType


class InputFormat(str, Enum):
    """Archive format of the input grids."""

    GBPTREES = "gbptrees"
    VELOCIRAPTOR = "velociraptor"


class RegridConfig(BaseModel):
    """
    Everything needed to regrid one archive.

    Attributes:
        input_format: Archive format of input_path
        input_path: File to read
        output_path: File to create
        new_dim: Target cells per axis (cubic), must divide the input dimension
        filter_type: Smoothing kernel applied before decimation
        radius_factor: Filter scale as a fraction of the new cell size
        n_threads: Worker threads (default: all hardware threads)
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    input_format: InputFormat
    input_path: Path
    output_path: Path
    new_dim: int = Field(gt=0, description="Target cells per axis")
    filter_type: FilterType = Field(default=FilterType.REAL_TOP_HAT)
    radius_factor: float = Field(default=0.5, gt=0.0, description="R / new cell size")
    n_threads: Optional[int] = Field(default=None, gt=0)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegridConfig":
        """
        Build a config, converting validation failures to ConfigurationError.
        """
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(_describe_validation_error(e)) from e

    @classmethod
    def from_yaml(cls, path: Union[str, Path], **overrides: Any) -> "RegridConfig":
        """
        Load a config file, with non-None overrides taking precedence.

        Raises:
            ConfigurationError: If the file is missing, malformed or invalid
        """
        return cls.from_dict({**load_yaml(path), **_drop_none(overrides)})

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Write the config as YAML."""
        with open(path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, sort_keys=False)

    def summary(self) -> str:
        """Human-readable multi-line description of the run."""
        threads = self.n_threads if self.n_threads is not None else "all"
        return "\n".join(
            [
                f"Input ({self.input_format.value}): {self.input_path}",
                f"Output:          {self.output_path}",
                f"New dimension:   {self.new_dim}³",
                f"Filter:          {self.filter_type.value} (R = {self.radius_factor} × cell)",
                f"Threads:         {threads}",
            ]
        )


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a YAML mapping.

    Raises:
        ConfigurationError: If the file is missing, unparsable or not a mapping
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        field = ".".join(str(p) for p in err["loc"]) or "config"
        parts.append(f"{field}: {err['msg']}")
    return "Invalid configuration: " + "; ".join(parts)
