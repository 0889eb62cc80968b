"""
Configuration repository for loading and saving config files.

Settings live in `<config_dir>/cmadmin.json` (or `.jsonc`); stored
credentials live in `<config_dir>/credentials/<ref>.json`.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List

from cmadmin.domain.config import ClientSettings

logger = logging.getLogger(__name__)

SETTINGS_FILE = "cmadmin"

ENV_OVERRIDES = {
    "CMADMIN_PROVIDER_SERVER": "provider_server",
    "CMADMIN_SITE_CODE": "site_code",
    "CMADMIN_CREDENTIAL_REF": "credential_ref",
}

_LINE_COMMENT = re.compile(r'^\s*//.*$', re.MULTILINE)
_BLOCK_COMMENT = re.compile(r'/\*.*?\*/', re.DOTALL)


def _strip_comments(jsonc_content: str) -> str:
    """Strip whole-line // comments and /* */ blocks from JSONC content."""
    return _LINE_COMMENT.sub("", _BLOCK_COMMENT.sub("", jsonc_content))


class ConfigRepository:
    """
    Repository for configuration file operations.

    Handles loading and saving of configuration files with support for
    JSON and JSONC formats.
    """

    def __init__(self, config_dir: Path):
        """
        Initialize the config repository.

        Args:
            config_dir: Base directory for configuration files
        """
        self.config_dir = Path(config_dir)

    def load_json_file(self, filename: str, allow_jsonc: bool = True) -> Dict[str, Any]:
        """
        Load a JSON or JSONC file.

        Args:
            filename: Name of the file to load (without extension)
            allow_jsonc: Whether to look for a .jsonc variant

        Returns:
            Parsed JSON data as dictionary

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file cannot be parsed
        """
        json_path = self.config_dir / f"{filename}.json"
        jsonc_path = self.config_dir / f"{filename}.jsonc"

        if json_path.exists():
            try:
                return json.loads(json_path.read_text(encoding='utf-8'))
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON in {json_path}: {e}") from e

        if allow_jsonc and jsonc_path.exists():
            try:
                return json.loads(_strip_comments(jsonc_path.read_text(encoding='utf-8')))
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSONC in {jsonc_path}: {e}") from e

        raise FileNotFoundError(
            f"Config file '{filename}.json' or '{filename}.jsonc' not found in {self.config_dir}"
        )

    def save_json_file(self, filename: str, data: Dict[str, Any]) -> Path:
        """
        Save data to a JSON file, creating parent directories.

        Args:
            filename: Name of the file to save (without extension)
            data: Data to save

        Returns:
            Path of the written file
        """
        filepath = self.config_dir / f"{filename}.json"
        filepath.parent.mkdir(parents=True, exist_ok=True)
        filepath.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding='utf-8')
        logger.info("Saved config file: %s", filepath)
        return filepath

    def load_settings(self, apply_env: bool = True) -> ClientSettings:
        """
        Load client settings; a missing file yields defaults.

        Environment variables (CMADMIN_PROVIDER_SERVER, CMADMIN_SITE_CODE,
        CMADMIN_CREDENTIAL_REF) override file values.

        Raises:
            ValueError: If the file exists but is invalid
        """
        try:
            data = self.load_json_file(SETTINGS_FILE)
        except FileNotFoundError:
            logger.debug("No settings file in %s, using defaults", self.config_dir)
            data = {}

        if apply_env:
            for env_name, field_name in ENV_OVERRIDES.items():
                value = os.environ.get(env_name)
                if value:
                    data[field_name] = value

        try:
            return ClientSettings(**data)
        except Exception as e:
            logger.error("Failed to load settings: %s", e)
            raise ValueError(f"Invalid cmadmin settings: {e}") from e

    def save_settings(self, settings: ClientSettings) -> Path:
        return self.save_json_file(SETTINGS_FILE, settings.model_dump(mode="json"))

    def list_credentials(self) -> List[str]:
        """Names of stored credential references."""
        cred_dir = self.config_dir / "credentials"
        if not cred_dir.exists():
            return []
        return sorted(p.stem for p in cred_dir.glob("*.json"))
