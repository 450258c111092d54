"""
Client wrappers for external services.
"""

from .exchange_rate_client import ExchangeRateClient
from .openai_client import OpenAIClient
from .postgres_client import PostgresClient, Transaction

__all__ = [
    'ExchangeRateClient',
    'OpenAIClient',
    'PostgresClient',
    'Transaction',
]
