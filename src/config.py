"""
Configuration management for the epidemic trajectory engine.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


class Config:
    """Application configuration settings."""

    # Base paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    MODELS_DIR: Path = Path(os.getenv("MODELS_DIR", str(PROJECT_ROOT / "models")))
    RUNS_DIR: Path = Path(os.getenv("RUNS_DIR", str(PROJECT_ROOT / "runs")))

    # Logging settings
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv(
        "LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Simulation settings
    DEFAULT_PROCESSES: int = int(os.getenv("APACE_PROCESSES", "1"))

    @classmethod
    def ensure_directories(cls) -> None:
        """Ensure all required directories exist."""
        cls.RUNS_DIR.mkdir(parents=True, exist_ok=True)


# Initialize directories on import
Config.ensure_directories()
