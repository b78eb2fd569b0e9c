"""Matching, templating and reaction dispatch."""

from .dispatcher import ReactionDispatcher
from .matcher import RuleMatcher, compare, filter_accepts, lookup_path
from .template import render, render_parameters, resolve

__all__ = [
    "ReactionDispatcher",
    "RuleMatcher",
    "compare",
    "filter_accepts",
    "lookup_path",
    "render",
    "render_parameters",
    "resolve",
]
