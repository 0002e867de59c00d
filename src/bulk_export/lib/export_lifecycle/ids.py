"""Opaque export identifier value type."""

import uuid
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ExportId:
    """Unique, immutable identifier of an export job.

    Wraps a UUID so callers never depend on the storage representation.
    """

    value: uuid.UUID

    @classmethod
    def generate(cls) -> "ExportId":
        """Create a new random export ID."""
        return cls(uuid.uuid4())

    @classmethod
    def from_string(cls, raw: str) -> "ExportId":
        """Parse an export ID from its string form.

        Args:
            raw: Canonical UUID string.

        Returns:
            The parsed ExportId.

        Raises:
            ValueError: If ``raw`` is not a valid UUID.
        """
        try:
            return cls(uuid.UUID(str(raw)))
        except (ValueError, AttributeError) as exc:
            msg = f"Invalid export id: {raw!r}"
            raise ValueError(msg) from exc

    @classmethod
    def coerce(cls, value: "ExportId | uuid.UUID | str") -> "ExportId":
        """Accept an ExportId, a UUID, or a UUID string."""
        if isinstance(value, ExportId):
            return value
        if isinstance(value, uuid.UUID):
            return cls(value)
        return cls.from_string(value)

    def __str__(self) -> str:
        return str(self.value)
