"""Security policy and statement validation."""
from semql.policy.engine import (
    SecurityPolicy,
    SecurityValidator,
    TablePolicy,
    ValidatedStatement,
    load_policy,
)

__all__ = [
    "SecurityPolicy",
    "SecurityValidator",
    "TablePolicy",
    "ValidatedStatement",
    "load_policy",
]
