"""
This module loads the runtime configuration:
connection settings from the environment and the dataset file.
"""

import os
import json
import logging

from dotenv import load_dotenv
from pydantic import ValidationError

from models.config_models import DatabaseSettings, DatasetConfig
from services.datastore import PgVectorDatastore
from services.tools import EntityToolService

# Load environment variables once for every entry point
load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DATASET_CONFIG_FILE = os.getenv("DATASET_CONFIG_FILE", "datasets/monsters.json")

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))


class ConfigurationError(Exception):
    """Raised when the configuration cannot be loaded; fatal at startup."""


def configure_logging(level: str = LOG_LEVEL) -> None:
    """
    Configures the root logger. Output goes to stderr so it never mixes
    with a stdio tool transport.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_database_settings() -> DatabaseSettings:
    """
    Builds the PostgreSQL connection settings from environment variables.

    Raises:
        ConfigurationError: If a numeric variable is malformed.
    """
    try:
        return DatabaseSettings(
            host=os.getenv("POSTGRES_HOST", "localhost"),
            port=os.getenv("POSTGRES_PORT", "5432"),
            dbname=os.getenv("POSTGRES_DB", "postgres"),
            user=os.getenv("POSTGRES_USER", "postgres"),
            password=os.getenv("POSTGRES_PASSWORD", ""),
            connect_timeout=os.getenv("POSTGRES_CONNECT_TIMEOUT", "5"),
            pool_max=os.getenv("POSTGRES_POOL_MAX", "10"),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid database settings: {e}") from e


def load_dataset_config(config_path: str = DATASET_CONFIG_FILE) -> DatasetConfig:
    """
    Load and validate the dataset configuration from a JSON file.

    Args:
        config_path (str): Path to the configuration file. Defaults to DATASET_CONFIG_FILE.

    Returns:
        DatasetConfig: Validated configuration object.

    Raises:
        ConfigurationError: If the file is missing, is not JSON or fails validation.
    """
    if not os.path.exists(config_path):
        raise ConfigurationError(f"Configuration file {config_path} not found")
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = json.load(f)
        # Create the DatasetConfig object; validation happens here
        dataset_config = DatasetConfig.model_validate(raw_config)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Configuration file {config_path} is not valid JSON: {e}") from e
    except ValidationError as e:
        raise ConfigurationError(f"Invalid dataset configuration in {config_path}: {e}") from e
    logging.info("Loaded dataset config: %s", dataset_config.model_dump_json())
    return dataset_config


def build_tool_service(config_path: str = DATASET_CONFIG_FILE) -> EntityToolService:
    """
    Builds the tool service for the configured dataset. The datastore
    connects lazily, so this never touches the network.

    Raises:
        ConfigurationError: If the configuration cannot be loaded.
    """
    dataset = load_dataset_config(config_path)
    datastore = PgVectorDatastore(load_database_settings(), dataset)
    return EntityToolService.from_config(dataset, datastore)
