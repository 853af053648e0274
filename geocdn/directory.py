"""Region registry with persistence to the durable key-value store"""
import json
import logging
from typing import Optional, Dict, List

from pydantic import TypeAdapter, ValidationError

from geocdn.config import settings
from geocdn.errors import DirectoryPersistenceError, StoreError
from geocdn.kv import KeyValueStore
from geocdn.models import Region

logger = logging.getLogger(__name__)

_region_list = TypeAdapter(List[Region])


class RegionDirectory:
    """
    Owns the Region records for one process.

    There is no lock between mutation and save: a save racing add_region may
    persist a snapshot taken mid-update. The directory is expected to be
    mutated by a single control-plane actor between health sweeps.
    """

    def __init__(self, kv: KeyValueStore, key: Optional[str] = None):
        self.kv = kv
        self.key = key or settings.regions_key
        self._regions: Dict[str, Region] = {}

    def add_region(self, region: Region) -> None:
        """Insert or replace a region by id"""
        self._regions[region.id] = region

    def remove_region(self, region_id: str) -> bool:
        return self._regions.pop(region_id, None) is not None

    def get(self, region_id: str) -> Optional[Region]:
        return self._regions.get(region_id)

    def regions(self) -> List[Region]:
        return list(self._regions.values())

    def region_ids(self) -> List[str]:
        return list(self._regions.keys())

    def __contains__(self, region_id: str) -> bool:
        return region_id in self._regions

    def __len__(self) -> int:
        return len(self._regions)

    def dangling_fallbacks(self) -> Dict[str, str]:
        """Map of region id -> fallback id for fallbacks naming no known region"""
        return {
            region.id: region.fallback
            for region in self.regions()
            if region.fallback and region.fallback not in self._regions
        }

    def load_regions(self) -> int:
        """Merge the persisted region list into memory, returns regions loaded"""
        try:
            data = self.kv.get(self.key)
        except StoreError as e:
            raise DirectoryPersistenceError(f"Failed to load regions: {e}") from e

        if data is None:
            return 0

        try:
            loaded = _region_list.validate_json(data)
        except ValidationError as e:
            raise DirectoryPersistenceError(f"Stored region list is invalid: {e}") from e

        for region in loaded:
            self._regions[region.id] = region
        logger.info(f"Loaded {len(loaded)} regions from {self.key}")
        return len(loaded)

    def save_regions(self) -> None:
        """Write the whole directory back as a single record"""
        regions = self.regions()
        payload = json.dumps([region.model_dump(mode="json") for region in regions])

        for region_id, fallback in self.dangling_fallbacks().items():
            logger.warning(f"Region {region_id} falls back to unknown region {fallback}")

        try:
            self.kv.put(self.key, payload)
        except StoreError as e:
            raise DirectoryPersistenceError(f"Failed to save regions: {e}") from e
