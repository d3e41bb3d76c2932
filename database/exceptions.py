"""Database exception types."""


class DatabaseError(Exception):
    """Base exception for database failures."""
    pass


class DatabaseSchemaError(DatabaseError):
    """Raised when schema initialization or migration fails."""
    pass


__all__ = ['DatabaseError', 'DatabaseSchemaError']
