"""
Bundler configuration.

Recognized options (JSON):

    {
        "entry": "src/main.py",
        "output": {"path": "dist", "filename": "bundle.py"}
    }

Relative paths are taken relative to the directory holding the config file.
"""

#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2025-2026 gwz

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema

CONFIG_FILENAME = "minipack.config.json"
DEFAULT_OUTPUT_PATH = "dist"
DEFAULT_OUTPUT_FILENAME = "bundle.py"

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "entry": {"type": "string", "minLength": 1},
        "output": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "minLength": 1},
                "filename": {"type": "string", "minLength": 1, "pattern": r"^[^/\\]+$"},
            },
            "additionalProperties": False,
        },
    },
    "required": ["entry"],
    "additionalProperties": False,
}


class ConfigError(Exception):
    """Raised when a configuration file cannot be read or is invalid."""

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.filename = filename


@dataclass(frozen=True)
class OutputConfig:
    path: Path = Path(DEFAULT_OUTPUT_PATH)
    filename: str = DEFAULT_OUTPUT_FILENAME

    @property
    def target(self) -> Path:
        return self.path / self.filename


@dataclass(frozen=True)
class BundleConfig:
    entry: Path
    output: OutputConfig = field(default_factory=OutputConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None, filename: Optional[str] = None) -> "BundleConfig":
        """Validate `data` against CONFIG_SCHEMA and build a config from it."""
        errors = validate_config(data)
        if errors:
            raise ConfigError(f"[CFG-0020] invalid configuration: {'; '.join(errors)}", filename)

        base_dir = base_dir or Path(".")
        output = data.get("output", {})
        return cls(
            entry=base_dir / data["entry"],
            output=OutputConfig(
                path=base_dir / output.get("path", DEFAULT_OUTPUT_PATH),
                filename=output.get("filename", DEFAULT_OUTPUT_FILENAME),
            ),
        )


def validate_config(data: Any) -> List[str]:
    """Return schema violations as 'pointer: message' strings, ordered by location."""
    validator = jsonschema.Draft202012Validator(CONFIG_SCHEMA)
    messages: List[str] = []
    for err in sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path]):
        pointer = "/" + "/".join(str(p) for p in err.absolute_path)
        messages.append(f"{pointer}: {err.message}")
    return messages


def load_config(path: str | Path) -> BundleConfig:
    """Read and validate a JSON config file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"[CFG-0010] cannot read config file: {e}", str(path)) from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"[CFG-0010] config file is not valid JSON: {e}", str(path)) from e
    return BundleConfig.from_dict(data, base_dir=path.parent, filename=str(path))
