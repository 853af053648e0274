"""Error types shared by the routing core"""
from typing import Optional


class GeoCdnError(Exception):
    """Base class for every error raised by geocdn"""


class NoHealthyRegionError(GeoCdnError):
    """No region has an origin able to take the request"""

    def __init__(self, message: str = "No healthy regions available"):
        super().__init__(message)


class StoreError(GeoCdnError):
    """A key-value or object store operation failed"""


class DirectoryPersistenceError(StoreError):
    """Loading or saving the region directory failed"""


class ProbeFailure(GeoCdnError):
    """A health probe did not get a successful answer from an origin"""

    def __init__(self, origin_id: str, reason: str, latency_ms: Optional[float] = None):
        self.origin_id = origin_id
        self.reason = reason
        self.latency_ms = latency_ms
        super().__init__(f"Probe of {origin_id} failed: {reason}")


class ReplicationSourceMissing(GeoCdnError):
    """The object to replicate is absent from the source region"""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Source not found: {path}")


class ReplicationWriteFailure(GeoCdnError):
    """Writing a replicated object into a target region failed"""

    def __init__(self, path: str, target_region: str, reason: str):
        self.path = path
        self.target_region = target_region
        self.reason = reason
        super().__init__(f"Failed to replicate {path} to {target_region}: {reason}")
