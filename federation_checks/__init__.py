"""Federated server reachability monitor for Matrix rooms."""

__version__ = "0.1.0"
