"""Shared domain models and services for the Lyra payment integration."""

__version__ = "0.1.0"
