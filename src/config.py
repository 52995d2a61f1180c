"""Configuration module for the covariate project.

Centralizes data paths and default settings.
"""
from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Data directories
DATA_DIR = PROJECT_ROOT / "data"
CONFIG_DIR = PROJECT_ROOT / "config"
OUTPUT_DIR = DATA_DIR / "output"


# Default settings
DEFAULT_CONFIG = CONFIG_DIR / "covariates.json"
DEFAULT_OUTPUT = OUTPUT_DIR / "covariates.csv"
DEFAULT_LOG_LEVEL = "INFO"
