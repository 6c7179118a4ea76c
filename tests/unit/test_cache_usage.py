"""Tests for remote cache usage reporting."""

from datetime import timedelta

from mise_s3_cache.client_operations import get_cache_usage
from mise_s3_cache.core import StorageUnavailableError


class FlakyListing:
    """Wraps a storage fake so listing fails after a number of objects."""

    def __init__(self, storage, fail_after):
        self._storage = storage
        self._fail_after = fail_after

    def __getattr__(self, name):
        return getattr(self._storage, name)

    def list(self, prefix):
        for count, obj in enumerate(self._storage.list(prefix)):
            if count == self._fail_after:
                raise StorageUnavailableError("connection reset")
            yield obj


def _seed_entry(storage, key, archive_size, age=timedelta(0)):
    storage.seed(key.archive_key, b"a" * archive_size, age=age)
    storage.seed(key.checksum_key, b"c" * 10, age=age)


class TestGetCacheUsage:
    def test_groups_by_entry_and_tool(self, service, storage):
        go_old = service.cache_key("go", "1.20.0")
        go_new = service.cache_key("go", "1.21.0")
        node = service.cache_key("node", "20.11.1")
        _seed_entry(storage, go_old, 100, age=timedelta(days=3))
        _seed_entry(storage, go_new, 200)
        _seed_entry(storage, node, 50)
        storage.seed("elsewhere/file", b"x" * 999)

        usage = get_cache_usage(service)

        assert usage.object_count == 6
        assert usage.entry_count == 3
        assert usage.total_size == 100 + 200 + 50 + 3 * 10
        assert usage.tools == {"go": 320, "node": 60}
        assert usage.error is None
        assert not usage.partial

        entry = next(e for e in usage.entries if e.version == "1.20.0")
        assert entry.key == go_old.path
        assert entry.object_count == 2
        assert entry.last_modified == service.clock.now() - timedelta(days=3)

    def test_ignores_objects_outside_entry_layout(self, service, storage):
        storage.seed(f"{service.config.tools_prefix}README", b"hello")
        usage = get_cache_usage(service)
        assert usage.object_count == 1
        assert usage.entries == []

    def test_unavailable_config(self, make_service, storage):
        usage = get_cache_usage(make_service(bucket=""))
        assert usage.error == "S3 bucket not configured. Set MISE_S3_CACHE_BUCKET"
        assert storage.calls == []

    def test_listing_failure(self, service, storage, logger):
        storage.fail(StorageUnavailableError("access denied"))
        usage = get_cache_usage(service)
        assert usage.object_count == 0
        assert usage.error == "access denied"
        assert not usage.partial
        assert "Failed to list cache objects" in logger.messages("error")

    def test_partial_listing(self, service, storage, logger):
        _seed_entry(storage, service.cache_key("go", "1.21.0"), 100)
        _seed_entry(storage, service.cache_key("node", "20.11.1"), 100)
        service.storage = FlakyListing(storage, fail_after=3)

        usage = get_cache_usage(service)

        assert usage.object_count == 3
        assert usage.partial
        assert usage.error == "connection reset"
        assert "Listing interrupted, returning partial results" in logger.messages("warning")
