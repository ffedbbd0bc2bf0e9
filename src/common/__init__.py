"""
Common building blocks shared by the classifier and the embedding recomputer.

This package contains reusable, domain-agnostic code:

- configuration loading (environment variables)
- the data model and the SQLite storage with its freshness marker
- retry/backoff helpers and OpenAI-compatible API calls
- a small polling daemon loop
- logging configuration
"""
