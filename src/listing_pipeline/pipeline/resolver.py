"""
Tolerant reference-data resolution.

Each of the four normalized references on a listing (category, manufacturer,
unit, condition) is resolved by an ordered chain of lookup strategies that
stops at the first hit. A miss is not an error: the reference stays null and
listing creation continues.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar
from uuid import UUID

from ..logging import get_logger
from ..models.reference import Category, Condition, Manufacturer, Unit
from ..repository import TradeRepository

logger = get_logger(__name__)

T = TypeVar('T')

Lookup = Callable[[str], Awaitable[T | None]]


class LookupChain(Generic[T]):
    """
    Ordered lookup strategies, short-circuiting on the first hit.

    Usage:
        chain = LookupChain('unit', [('name', by_name), ('abbreviation', by_abbrev)])
        unit = await chain.resolve('ea')
    """

    def __init__(self, name: str, strategies: list[tuple[str, Lookup]]):
        self.name = name
        self.strategies = strategies

    async def resolve(self, value: str | None) -> T | None:
        if value is None or not value.strip():
            return None
        needle = value.strip()
        for strategy_name, lookup in self.strategies:
            found = await lookup(needle)
            if found is not None:
                logger.debug(
                    'resolver.hit', reference=self.name, strategy=strategy_name, value=needle
                )
                return found
        logger.debug('resolver.miss', reference=self.name, value=needle)
        return None


@dataclass
class ResolvedReferences:
    category_id: UUID | None = None
    manufacturer_id: UUID | None = None
    unit_id: UUID | None = None
    condition_id: UUID | None = None


class ReferenceResolver:
    """
    Resolves extracted names to reference-data IDs.

    - category: exact case-insensitive name
    - manufacturer: exact name, else alias scan over active manufacturers
    - unit: exact name, else abbreviation
    - condition: exact name, else abbreviation, else substring match against
      active condition names (e.g. "mint" -> "Near Mint")
    """

    def __init__(self, repository: TradeRepository):
        self.repository = repository

        self.categories: LookupChain[Category] = LookupChain(
            'category',
            [('name', repository.find_category_by_name)],
        )
        self.manufacturers: LookupChain[Manufacturer] = LookupChain(
            'manufacturer',
            [
                ('name', repository.find_manufacturer_by_name),
                ('alias', self._manufacturer_by_alias),
            ],
        )
        self.units: LookupChain[Unit] = LookupChain(
            'unit',
            [
                ('name', repository.find_unit_by_name),
                ('abbreviation', repository.find_unit_by_abbreviation),
            ],
        )
        self.conditions: LookupChain[Condition] = LookupChain(
            'condition',
            [
                ('name', repository.find_condition_by_name),
                ('abbreviation', repository.find_condition_by_abbreviation),
                ('contains', self._condition_by_substring),
            ],
        )

    async def _manufacturer_by_alias(self, value: str) -> Manufacturer | None:
        for manufacturer in await self.repository.list_active_manufacturers():
            if manufacturer.has_alias(value):
                return manufacturer
        return None

    async def _condition_by_substring(self, value: str) -> Condition | None:
        needle = value.lower()
        for condition in await self.repository.list_active_conditions():
            if needle in condition.name.lower():
                return condition
        return None

    async def resolve(
        self,
        category: str | None = None,
        manufacturer: str | None = None,
        unit: str | None = None,
        condition: str | None = None,
    ) -> ResolvedReferences:
        """Resolve all four references independently."""
        found_category = await self.categories.resolve(category)
        found_manufacturer = await self.manufacturers.resolve(manufacturer)
        found_unit = await self.units.resolve(unit)
        found_condition = await self.conditions.resolve(condition)
        return ResolvedReferences(
            category_id=found_category.id if found_category else None,
            manufacturer_id=found_manufacturer.id if found_manufacturer else None,
            unit_id=found_unit.id if found_unit else None,
            condition_id=found_condition.id if found_condition else None,
        )
