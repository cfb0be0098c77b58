"""
Integration tests.

These wire a full `DataAccessLayer` together and drive it through outage
and recovery scenarios with scripted backends and an injected clock.
"""
