"""Application layer: services and the `DataAccessLayer` composition root."""

from data_resilience.application.data_access_layer import DataAccessLayer

__all__ = ["DataAccessLayer"]
