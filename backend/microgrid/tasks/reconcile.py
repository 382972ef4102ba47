import logging
from microgrid.database import SessionLocal
from microgrid.services.aggregator import Aggregator
from microgrid.services.prediction_ledger import PredictionLedger
from microgrid.services.sample_store import SampleStore

logger = logging.getLogger(__name__)


def reconcile_predictions_job():
    """
    Scheduled job that resolves pending predictions from recorded load.
    Resolution lags ingestion by up to one interval.
    """
    logger.info("Starting scheduled prediction reconciliation")
    session = SessionLocal()
    try:
        ledger = PredictionLedger(session, aggregator=Aggregator(SampleStore(session)))
        resolved = ledger.reconcile()
        logger.info(f"Prediction reconciliation completed, {resolved} resolved")
    except Exception:
        logger.exception("Prediction reconciliation job failed")
        session.rollback()
    finally:
        session.close()
