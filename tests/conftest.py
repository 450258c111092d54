"""
Pytest configuration and shared fixtures.

Key fixtures:
- repository: InMemoryRepository seeded with reference data and jargon
- make_message: factory for RawMessage rows stored in the repository
- stub_extractor / make_pipeline: pipeline wired to in-memory collaborators

Components are tested against the in-memory repository; Postgres and OpenAI
clients are tested with mocked engines and transports.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

import pytest

# Add src and tests to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))
sys.path.insert(0, str(Path(__file__).parent))

# Load environment variables
from dotenv import load_dotenv

env_file = Path(__file__).parent.parent / '.env'
if env_file.exists():
    load_dotenv(env_file)

from fakes import InMemoryRepository, StubExtractor  # noqa: E402

from listing_pipeline.models import (  # noqa: E402
    Category,
    Condition,
    JargonEntry,
    Manufacturer,
    RawMessage,
    Unit,
)
from listing_pipeline.pipeline import ConfidenceRouter, ListingPipeline  # noqa: E402
from listing_pipeline.prompts.extract_listings import ExtractedItem, ExtractionResult  # noqa: E402


@pytest.fixture
def repository() -> InMemoryRepository:
    """In-memory repository seeded with reference data and jargon."""
    repo = InMemoryRepository()
    repo.categories = [
        Category(name='Valves'),
        Category(name='Pumps'),
        Category(name='Dive Watch'),
    ]
    repo.manufacturers = [
        Manufacturer(name='Parker Hannifin', aliases=['Parker', 'PH']),
        Manufacturer(name='Rolex', aliases=[]),
    ]
    repo.units = [
        Unit(name='each', abbreviation='ea'),
        Unit(name='box', abbreviation='bx'),
    ]
    repo.conditions = [
        Condition(name='New Old Stock', abbreviation='NOS', sort_order=1),
        Condition(name='Near Mint', abbreviation='NM', sort_order=2),
        Condition(name='Used', abbreviation=None, sort_order=3),
    ]
    repo.jargon = [
        JargonEntry(acronym='NOS', expansion='New Old Stock', verified=True, source='seed'),
        JargonEntry(acronym='FS', expansion='For Sale', verified=True, source='seed'),
        JargonEntry(acronym='WTB', expansion='Want To Buy', verified=False),
    ]
    return repo


@pytest.fixture
def make_message(repository):
    """Factory that stores and returns a RawMessage."""
    counter = {'n': 0}
    base = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def _make(body: str | None = 'Selling 10x Parker valves NOS $50 each', **kwargs) -> RawMessage:
        counter['n'] += 1
        defaults = {
            'group_id': uuid4(),
            'external_message_id': f'wamid.{counter["n"]:04d}',
            'sender_name': 'Alice',
            'sender_phone': '+15550001',
            'body': body,
            'received_at': base + timedelta(minutes=counter['n']),
        }
        defaults.update(kwargs)
        return repository.add_message(RawMessage(**defaults))

    return _make


@pytest.fixture
def valve_extraction() -> ExtractionResult:
    """Extraction for 'Selling 10x Parker valves NOS $50 each' at high confidence."""
    return ExtractionResult(
        intent='sell',
        items=[
            ExtractedItem(
                description='Parker valves',
                category='Valves',
                manufacturer='Parker',
                quantity=10,
                unit='ea',
                price=50,
                currency='usd',
                condition='NOS',
            )
        ],
        unknown_terms=[],
        confidence=0.92,
    )


@pytest.fixture
def stub_extractor(valve_extraction) -> StubExtractor:
    return StubExtractor(valve_extraction)


@pytest.fixture
def make_pipeline(repository, stub_extractor):
    """Factory for a pipeline over the in-memory repository."""

    def _make(**kwargs) -> ListingPipeline:
        defaults = {
            'repository': repository,
            'extractor': stub_extractor,
            'router': ConfidenceRouter(repository),
        }
        defaults.update(kwargs)
        return ListingPipeline(**defaults)

    return _make
