"""Metrics, monitoring, request limiting and validation, resilient Redis clients, scaling and sharding for an event-sourced banking service."""

__version__ = "0.1.0"