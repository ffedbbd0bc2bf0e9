"""
Error Types
===========

Exceptions shared by the classifier and the embedding recomputation code.

- ``TransientAPIError``: an embedding or fallback model call failed after all
  retries. Callers degrade (classification) or record the failure and move on
  (recomputation).
- ``ConfigurationError``: a collaborator cannot be constructed because its
  credentials or endpoint are missing or invalid. It subclasses ``ValueError``
  so entrypoints can keep treating configuration problems uniformly.
- ``StorageError``: the durable store could not be read or written.
"""


class TransientAPIError(Exception):
    """Raised when a remote model call fails after retries."""


class ConfigurationError(ValueError):
    """Raised when required configuration for a collaborator is missing."""


class StorageError(Exception):
    """Raised when the durable store fails."""
