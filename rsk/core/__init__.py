"""Core types shared by every layer: results, config, exit codes, retry."""

from .config import Config, ConfigError, load_config, load_config_or_default
from .errors import ErrorCode
from .result import Err, Ok, Result, is_err, is_ok
from .retry import RetryPolicy, retry

__all__ = [
    "Config",
    "ConfigError",
    "load_config",
    "load_config_or_default",
    "ErrorCode",
    "Err",
    "Ok",
    "Result",
    "is_err",
    "is_ok",
    "RetryPolicy",
    "retry",
]
