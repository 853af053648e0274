"""Pytest configuration and fixtures for the geo routing core"""
import pytest
import httpx
from geocdn.directory import RegionDirectory
from geocdn.errors import StoreError
from geocdn.kv import MemoryKeyValueStore
from geocdn.models import Origin, Region
from geocdn.objects import MemoryObjectStore
from geocdn.replication import CrossRegionReplicator
from geocdn.routing import RoutingEngine


class FakeClock:
    """Manually advanced timer for TTL tests"""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FailingKeyValueStore(MemoryKeyValueStore):
    """Memory store whose writes (or deletes) can be switched to fail"""

    def __init__(self, fail_puts=False, fail_delete_keys=()):
        super().__init__()
        self.fail_puts = fail_puts
        self.fail_delete_keys = set(fail_delete_keys)

    def put(self, key, value, ttl=None):
        if self.fail_puts:
            raise StoreError(f"put {key} failed: store unavailable")
        super().put(key, value, ttl)

    def delete(self, key):
        if key in self.fail_delete_keys:
            raise StoreError(f"delete {key} failed: store unavailable")
        super().delete(key)


class FailingObjectStore(MemoryObjectStore):
    """Memory object store rejecting writes to the given keys"""

    def __init__(self, fail_keys=()):
        super().__init__()
        self.fail_keys = set(fail_keys)

    def put(self, key, content, content_type="application/octet-stream", custom_metadata=None):
        if key in self.fail_keys:
            raise StoreError("bucket rejected write")
        return super().put(key, content, content_type, custom_metadata)


def make_origin(origin_id, weight=1, healthy=True, latency_ms=50.0, url=None, failures=None):
    return Origin(
        id=origin_id,
        url=url or f"http://{origin_id}.example.test",
        weight=weight,
        healthy=healthy,
        latency_ms=latency_ms,
        consecutive_failures=failures if failures is not None else (0 if healthy else 3),
    )


def make_region(region_id, countries=(), origins=(), fallback=None, priority=1):
    return Region(
        id=region_id,
        name=region_id.upper(),
        code=f"{region_id}-1",
        countries=list(countries),
        origins=list(origins),
        fallback=fallback,
        priority=priority,
    )


def mock_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def objects():
    return MemoryObjectStore()


@pytest.fixture
def directory(kv):
    """Three regions: us-east and eu-west fail over to each other"""
    directory = RegionDirectory(kv)
    directory.add_region(make_region(
        "us-east", countries=["US", "CA"], fallback="eu-west",
        origins=[make_origin("use-1", latency_ms=40), make_origin("use-2", latency_ms=60)],
    ))
    directory.add_region(make_region(
        "eu-west", countries=["GB", "FR", "DE"], fallback="us-east",
        origins=[make_origin("euw-1", latency_ms=30)],
    ))
    directory.add_region(make_region(
        "ap-northeast", countries=["JP", "KR"],
        origins=[make_origin("apn-1", latency_ms=120)],
    ))
    return directory


@pytest.fixture
def router(directory):
    return RoutingEngine(directory, legacy_geo_reason=False, default_country="US")


@pytest.fixture
def replicator(kv, objects):
    replicator = CrossRegionReplicator(kv, objects, workers=2)
    replicator.start()
    yield replicator
    replicator.stop(timeout=5)
