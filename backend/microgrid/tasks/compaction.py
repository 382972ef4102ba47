import logging
from microgrid.database import SessionLocal
from microgrid.services.aggregator import bucket_cache
from microgrid.services.sample_store import SampleStore

logger = logging.getLogger(__name__)


def compact_readings_job():
    """Scheduled job that applies the retention window to stored readings."""
    logger.info("Starting scheduled reading compaction")
    session = SessionLocal()
    try:
        store = SampleStore(session)
        now = store.clock()
        removed = store.compact(now)
        evicted = bucket_cache.evict_before(now - store.retention)
        logger.info(f"Reading compaction completed: {removed} readings removed, {evicted} cached buckets evicted")
    except Exception:
        logger.exception("Reading compaction job failed")
        session.rollback()
    finally:
        session.close()
