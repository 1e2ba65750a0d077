"""Compliance Swarm — multi-agent compliance assessment pipeline."""

__version__ = "0.1.0"
