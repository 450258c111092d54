"""
Admin-managed reference data used to normalize extracted fields.

Read-only from the pipeline's perspective.
"""

from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class Category(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    parent_id: UUID | None = None
    is_active: bool = True


class Manufacturer(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    aliases: list[str] = Field(default_factory=list, description='Alternative names, e.g. "Parker"')
    is_active: bool = True

    def has_alias(self, value: str) -> bool:
        """Case-insensitive alias membership."""
        needle = value.strip().lower()
        return any(alias.strip().lower() == needle for alias in self.aliases if alias)


class Unit(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    abbreviation: str | None = None
    is_active: bool = True


class Condition(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    abbreviation: str | None = None
    sort_order: int = 0
    is_active: bool = True


class JargonEntry(BaseModel):
    """A trade acronym and its expansion, e.g. NOS -> New Old Stock."""

    id: UUID = Field(default_factory=uuid4)
    acronym: str
    expansion: str
    verified: bool = False
    source: str = 'llm'
    confidence: float = 0.5
    usage_count: int = 1
