"""Advisory cost estimation."""
from semql.estimate.estimator import Confidence, CostEstimate, CostEstimator

__all__ = ["Confidence", "CostEstimate", "CostEstimator"]
