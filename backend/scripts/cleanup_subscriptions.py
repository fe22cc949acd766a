"""
Remove stored subscriptions that are no longer valid.
Run after shrinking the supported ticker set: python scripts/cleanup_subscriptions.py

Deletes rows whose ticker is not supported and duplicate (user, ticker) rows
left by databases created before the unique constraint existed.
"""

import logging
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from broker_dashboard.core.database import SessionLocal
from broker_dashboard.services.subscription_service import subscription_service

logger = logging.getLogger("cleanup_subscriptions")


def main() -> int:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    db = SessionLocal()
    try:
        removed = subscription_service.purge_unsupported(db)
    except Exception as e:
        db.rollback()
        logger.error(f"Cleanup failed: {e}")
        return 1
    finally:
        db.close()
    logger.info(f"Cleanup complete, removed {removed} subscription(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
