"""Base model class for client-side records."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class ClientModel(BaseModel):
    """Base class for immutable records exchanged between components.

    Records accept both their Python field names and the server's wire
    names, and ignore unknown wire fields so that server additions do not
    break older clients.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
    )

    def summary(self) -> dict[str, Any]:
        """Return a summary dict for logging."""
        return {"type": self.__class__.__name__}
