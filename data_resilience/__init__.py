"""
Resilient data-access layer.

Every read/write to the remote backend passes through
`DataAccessLayer.execute_query`, which deduplicates concurrent calls, gates
them with a per-scope circuit breaker, retries transient failures and, when
the backend cannot answer, serves the best available fallback as a
`RecoveryResult` instead of raising.
"""

__version__ = "1.0.0"
