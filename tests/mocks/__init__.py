"""Mock objects for testing."""

from .factories import make_event, make_workflow
from .mock_redis import FakeRedis

__all__ = ["FakeRedis", "make_event", "make_workflow"]
