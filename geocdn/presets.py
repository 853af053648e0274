"""Default region layout"""
from geocdn.directory import RegionDirectory
from geocdn.kv import KeyValueStore
from geocdn.models import Region

REGION_PRESETS = [
    {
        "id": "us-east",
        "name": "US East",
        "code": "us-east-1",
        "countries": ["US", "CA", "MX", "CO", "VE", "BR"],
        "priority": 1,
        "fallback": "eu-west",
    },
    {
        "id": "us-west",
        "name": "US West",
        "code": "us-west-1",
        "countries": ["US"],  # reached through latency routing for the west coast
        "priority": 2,
        "fallback": "us-east",
    },
    {
        "id": "eu-west",
        "name": "EU West",
        "code": "eu-west-1",
        "countries": ["GB", "IE", "FR", "DE", "NL", "BE", "ES", "PT", "IT"],
        "priority": 1,
        "fallback": "us-east",
    },
    {
        "id": "eu-central",
        "name": "EU Central",
        "code": "eu-central-1",
        "countries": ["DE", "AT", "CH", "PL", "CZ", "HU", "RO", "BG"],
        "priority": 2,
        "fallback": "eu-west",
    },
    {
        "id": "ap-southeast",
        "name": "Asia Pacific Southeast",
        "code": "ap-southeast-1",
        "countries": ["SG", "MY", "ID", "TH", "VN", "PH", "AU", "NZ"],
        "priority": 1,
        "fallback": "ap-northeast",
    },
    {
        "id": "ap-northeast",
        "name": "Asia Pacific Northeast",
        "code": "ap-northeast-1",
        "countries": ["JP", "KR", "TW", "HK"],
        "priority": 1,
        "fallback": "ap-southeast",
    },
]

def create_default_directory(kv: KeyValueStore) -> RegionDirectory:
    """Directory pre-populated with the preset regions (no origins yet)"""
    directory = RegionDirectory(kv)
    for preset in REGION_PRESETS:
        directory.add_region(Region(**preset))
    return directory
