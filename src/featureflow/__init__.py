"""featureflow feature flag SDK."""

from .client import FeatureflowClient, create_client
from .config import FeatureflowConfig, RetryPolicy, build_config, load_config
from .context import ANONYMOUS_KEY, Context, ContextBuilder
from .evaluator import Evaluator
from .exceptions import (
    ConfigurationError,
    FeatureflowError,
    FeatureflowErrorCodes,
    RuleEvaluationError,
    TransientFetchError,
)
from .http_client import HttpFeatureSource
from .logger import new_logger
from .memory import InMemoryFeatureSource
from .models import (
    OFF_VARIANT,
    ON_VARIANT,
    Condition,
    EvaluationReason,
    EvaluationResult,
    Feature,
    FeatureFlag,
    Rule,
    Variant,
    VariantSplit,
    is_off_value,
)
from .operators import Operator, OperatorRegistry, default_operators
from .registry import FlagRegistry, Snapshot
from .source import FeatureSource
from .synchronizer import SyncState

__version__ = "0.1.0"

__all__ = [
    "ANONYMOUS_KEY",
    "OFF_VARIANT",
    "ON_VARIANT",
    "Condition",
    "ConfigurationError",
    "Context",
    "ContextBuilder",
    "EvaluationReason",
    "EvaluationResult",
    "Evaluator",
    "Feature",
    "FeatureFlag",
    "FeatureSource",
    "FeatureflowClient",
    "FeatureflowConfig",
    "FeatureflowError",
    "FeatureflowErrorCodes",
    "FlagRegistry",
    "HttpFeatureSource",
    "InMemoryFeatureSource",
    "Operator",
    "OperatorRegistry",
    "RetryPolicy",
    "Rule",
    "RuleEvaluationError",
    "Snapshot",
    "SyncState",
    "TransientFetchError",
    "Variant",
    "VariantSplit",
    "build_config",
    "create_client",
    "default_operators",
    "is_off_value",
    "load_config",
    "new_logger",
]
