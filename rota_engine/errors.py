"""
errors.py — Error kinds raised by the rota engine

  - ValidationError:       malformed input (dates, ranges, enum values, role mismatch)
  - NotFoundError:         a referenced row does not exist
  - ConflictError:         the change would break a uniqueness or overlap rule
  - InconsistencyError:    persisted rows refer to something that no longer exists
  - StoreUnavailableError: transient persistence failure, safe to retry

All validation happens before any mutation, so a raised ValidationError or
ConflictError never leaves partial writes behind.
"""


class RotaError(Exception):
    """Base class for every error the engine raises on purpose."""


class ValidationError(RotaError, ValueError):
    pass


class NotFoundError(RotaError, LookupError):
    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class ConflictError(RotaError):
    pass


class InconsistencyError(RotaError):
    pass


class StoreUnavailableError(RotaError):
    pass
