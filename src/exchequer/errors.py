"""Error taxonomy shared by the services, connectors and the HTTP layer."""

from typing import Any, Dict, List, Optional


class ExchequerError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    error: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.error
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message}


class ValidationError(ExchequerError):
    """Malformed or missing input, reported as a list of field-level violations."""

    status_code = 400
    error = "Validation failed"

    def __init__(self, details: List[Dict[str, Any]], message: Optional[str] = None):
        self.details = details
        super().__init__(message or self.error)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "details": self.details}


class NotFoundError(ExchequerError):
    """A referenced member or organization does not exist."""

    status_code = 404
    error = "Not found"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class AuthenticationError(ExchequerError):
    """A webhook failed signature verification."""

    status_code = 400
    error = "Webhook Error"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": f"{self.error}: {self.message}"}


class ProviderError(ExchequerError):
    """The payment processor rejected a call; its message is passed through."""

    status_code = 500
    error = "Payment provider error"

    def __init__(
        self,
        message: Optional[str] = None,
        provider: str = "stripe",
        code: Optional[str] = None,
    ):
        self.provider = provider
        self.code = code
        super().__init__(message)


class StoreError(ExchequerError):
    """A record store read or write failed."""

    status_code = 500
    error = "Record store error"


def field_errors(errors: Any, location: str = "body") -> List[Dict[str, Any]]:
    """Flatten pydantic/FastAPI error dicts into ``{field, message, location}`` entries."""
    details = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] in ("body", "query", "path", "header"):
            location_name, loc = loc[0], loc[1:]
        else:
            location_name = location
        details.append({
            "field": ".".join(loc) if loc else None,
            "message": err.get("msg", "Invalid value"),
            "location": location_name,
        })
    return details
