"""Multilevel meta-analysis of stressor effects on bivalve physiology."""

__version__ = "0.1.0"
