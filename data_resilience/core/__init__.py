"""Core layer: configuration, logging, exceptions, events and resilience primitives."""
