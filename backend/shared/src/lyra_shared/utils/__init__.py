"""Shared utilities for the Lyra payment service."""
