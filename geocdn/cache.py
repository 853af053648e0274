"""Region-partitioned cache on top of the key-value store"""
import logging
import uuid
from typing import Optional, List

from pydantic import ValidationError

from geocdn.config import settings
from geocdn.directory import RegionDirectory
from geocdn.errors import StoreError
from geocdn.kv import KeyValueStore
from geocdn.metrics import cache_hits_total, cache_misses_total
from geocdn.models import CacheEntry, CachedContent
from geocdn.routing import RoutingEngine

logger = logging.getLogger(__name__)


def get_cache_key(path: str, region_id: str) -> str:
    return f"cache:{region_id}:{path}"


class GeoCacheManager:
    """
    Each region has its own cache partition. A read only ever looks at the
    partition of the region the request routes to; there is no cross-region
    read-through.
    """

    def __init__(self, kv: KeyValueStore, router: RoutingEngine,
                 directory: Optional[RegionDirectory] = None):
        self.kv = kv
        self.router = router
        self.directory = directory or router.directory

    def get_cache_key(self, path: str, region_id: str) -> str:
        return get_cache_key(path, region_id)

    def get_cached(self, path: str, country: Optional[str] = None) -> Optional[CachedContent]:
        """Look up ``path`` in the partition of the region serving ``country``"""
        decision = self.router.route(country)
        region_id = decision.region.id
        data = self.kv.get(self.get_cache_key(path, region_id))

        if data is None:
            cache_misses_total.labels(region=region_id).inc()
            return None

        try:
            entry = CacheEntry.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"Dropping unreadable cache entry for {path} in {region_id}: {e}")
            cache_misses_total.labels(region=region_id).inc()
            return None

        cache_hits_total.labels(region=region_id).inc()
        return CachedContent(
            content=entry.body,
            content_type=entry.content_type,
            etag=entry.etag,
            region_id=region_id,
        )

    def cache(self, path: str, region_id: str, content: str, content_type: str,
              ttl: Optional[int] = None) -> CacheEntry:
        entry = CacheEntry(
            body=content,
            content_type=content_type,
            etag=f'"{uuid.uuid4().hex}"',
        )
        self.kv.put(self.get_cache_key(path, region_id), entry.model_dump_json(),
                    ttl=ttl or settings.cache_ttl)
        return entry

    def purge(self, path: str) -> List[str]:
        """Delete ``path`` from every region's partition, returns regions purged"""
        purged = []
        for region_id in self.directory.region_ids():
            try:
                self.kv.delete(self.get_cache_key(path, region_id))
            except StoreError as e:
                logger.warning(f"Purge of {path} in {region_id} failed: {e}")
                continue
            purged.append(region_id)
        return purged

    def warm_cache(self, path: str, content: str, content_type: str,
                   ttl: Optional[int] = None) -> List[str]:
        """Write the same content into every region's partition"""
        regions = self.directory.region_ids()
        for region_id in regions:
            self.cache(path, region_id, content, content_type, ttl)
        return regions
