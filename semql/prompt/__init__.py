"""Prompt construction for external planners."""
from semql.prompt.builder import PromptBuilder, PromptComponents

__all__ = ["PromptBuilder", "PromptComponents"]
