"""Automated repair of Bazel targets with model-driven coding agents."""

__version__ = "0.1.0"
