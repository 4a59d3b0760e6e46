"""
Background jobs infrastructure.

This package provides the storefront's durable job system with:
- Database-backed queue with an atomic claim
- Registry-based pluggable processors with per-type payload schemas
- Exponential backoff retries and per-attempt timeouts
- Append-only attempt history for every job
"""
