"""
Utility modules for the epidemic trajectory engine.
"""

from .logging_utils import setup_logger, get_logger, attach_run_log
from .data_validation import validate_dataframe, validate_dag_structure, validate_references

__all__ = [
    "setup_logger",
    "get_logger",
    "attach_run_log",
    "validate_dataframe",
    "validate_dag_structure",
    "validate_references",
]
