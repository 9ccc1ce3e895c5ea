"""Join path resolution over the catalog's join graph."""
from semql.joins.path_finder import JoinPath, JoinPathFinder, JoinStep, TieBreakRule

__all__ = ["JoinPath", "JoinPathFinder", "JoinStep", "TieBreakRule"]
