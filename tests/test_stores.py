import pytest
from geocdn.errors import StoreError
from geocdn.kv import MemoryKeyValueStore, RedisKeyValueStore
from geocdn.objects import FileObjectStore, MemoryObjectStore

def test_memory_kv_basic(kv):
    kv.put("a", "1")
    assert kv.get("a") == "1"
    kv.delete("a")
    assert kv.get("a") is None
    kv.delete("a")

def test_memory_kv_ttl(clock):
    kv = MemoryKeyValueStore(timer=clock)
    kv.put("short", "x", ttl=5)
    kv.put("forever", "y")

    clock.advance(6)

    assert kv.get("short") is None
    assert kv.get("forever") == "y"
    assert kv.list("") == ["forever"]

def test_memory_kv_list_prefix_and_limit(kv):
    for key in ["replication:1", "replication:2", "replication:3", "cache:x"]:
        kv.put(key, "v")

    assert sorted(kv.list("replication:")) == ["replication:1", "replication:2", "replication:3"]
    assert len(kv.list("replication:", limit=2)) == 2

def test_memory_kv_keeps_untimed_keys_under_load(kv):
    """Heavy cache traffic never evicts records written without a TTL"""
    kv.put("cdn:regions", "[]")
    for i in range(150000):
        kv.put(f"cache:us-east:{i}", "x", ttl=3600)

    assert kv.get("cdn:regions") == "[]"

def test_memory_kv_bounded_evicts_oldest():
    kv = MemoryKeyValueStore(maxsize=2)
    kv.put("a", "1")
    kv.put("b", "2")
    kv.put("c", "3")

    assert kv.get("a") is None
    assert sorted(kv.list("")) == ["b", "c"]

class RecordingRedis:
    """Stands in for a redis client and records SET calls"""

    def __init__(self):
        self.calls = []

    def set(self, key, value, ex=None):
        self.calls.append((key, value, ex))

@pytest.mark.parametrize("ttl, expected", [(None, None), (0, None), (60, 60)])
def test_redis_kv_zero_ttl_never_expires(ttl, expected):
    """ttl=0 means no expiry on both backends"""
    client = RecordingRedis()

    RedisKeyValueStore(client).put("cdn:regions", "[]", ttl=ttl)

    assert client.calls == [("cdn:regions", "[]", expected)]

def test_memory_kv_zero_ttl_never_expires(clock):
    kv = MemoryKeyValueStore(timer=clock)
    kv.put("forever", "y", ttl=0)

    clock.advance(10 ** 9)

    assert kv.get("forever") == "y"

@pytest.fixture(params=["memory", "file"])
def object_store(request, tmp_path):
    if request.param == "memory":
        return MemoryObjectStore()
    return FileObjectStore(str(tmp_path / "objects"))

def test_object_store_put_get(object_store):
    stored = object_store.put("us-east/css/app.css", b"body{}", content_type="text/css",
                              custom_metadata={"origin": "upload"})

    obj = object_store.get("us-east/css/app.css")
    assert obj.content == b"body{}"
    assert obj.content_type == "text/css"
    assert obj.custom_metadata == {"origin": "upload"}
    assert obj.etag == stored.etag

def test_object_store_list_and_delete(object_store):
    object_store.put("us-east/a", b"1")
    object_store.put("us-east/b/c", b"2")
    object_store.put("eu-west/a", b"3")

    assert object_store.list("us-east/") == ["us-east/a", "us-east/b/c"]

    object_store.delete("us-east/a")
    assert object_store.get("us-east/a") is None
    assert object_store.list("us-east/") == ["us-east/b/c"]

def test_object_store_missing(object_store):
    assert object_store.get("nowhere/nothing") is None

def test_file_store_rejects_escaping_keys(tmp_path):
    store = FileObjectStore(str(tmp_path / "objects"))
    with pytest.raises(StoreError):
        store.put("../outside", b"x")

def test_file_store_survives_reopen(tmp_path):
    FileObjectStore(str(tmp_path)).put("ap-northeast/x.bin", b"\x00\x01", content_type="application/x-bin")

    obj = FileObjectStore(str(tmp_path)).get("ap-northeast/x.bin")
    assert obj.content == b"\x00\x01"
    assert obj.content_type == "application/x-bin"
