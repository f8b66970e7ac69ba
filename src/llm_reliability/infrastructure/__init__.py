"""
Infrastructure Module

In-process response caching and metrics aggregation.
"""
