"""Test suite for the systematic review pipeline.

This package contains unit tests covering core utilities such as ID
normalization, deduplication logic, and influence scoring. To run the
tests, execute `pytest` from the project root.
"""
