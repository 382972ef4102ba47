from fastapi import APIRouter, Depends

from microgrid.api.deps import get_bucket_cache, get_store
from microgrid.services.aggregator import BucketCache
from microgrid.services.sample_store import SampleStore

router = APIRouter()


@router.post("/compact")
async def compact_store(
    store: SampleStore = Depends(get_store),
    cache: BucketCache = Depends(get_bucket_cache)
):
    """
    Purge readings older than the retention window.
    Normally run by the nightly job; callers must not assume purges happen on insert.
    """
    removed = store.compact()
    evicted = cache.evict_before(store.clock() - store.retention)
    return {
        "message": "Compaction complete",
        "readings_removed": removed,
        "cache_entries_evicted": evicted,
    }


@router.get("/cache")
async def cache_status(cache: BucketCache = Depends(get_bucket_cache)):
    """Size of the advisory bucket cache."""
    return {"cached_buckets": len(cache)}
