"""Exceptions raised by the marketplace modules."""

class ListingError(Exception):
    """Base exception for listing operations."""
    pass

class ListingNotFoundError(ListingError):
    """Raised when a listing is not found."""
    pass

class ItemNotFoundError(ListingError):
    """Raised when the item behind a listing request is not found."""
    pass

class ListingPermissionError(ListingError):
    """Raised when the caller does not own the listing or item."""
    pass

class ListingStateError(ListingError):
    """Raised when a listing is in the wrong state for an operation."""
    pass

class InvalidPriceError(ListingError):
    """Raised when a price or bid amount is invalid."""
    pass
