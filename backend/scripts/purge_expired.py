"""
Delete expired authorization codes, tokens and login sessions.
Schedule periodically (cron, systemd timer): python scripts/purge_expired.py
"""

import logging
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from idp.core.database import SessionLocal
from idp.services.session_service import session_service
from idp.services.token_service import token_service

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger("purge_expired")


def main():
    db = SessionLocal()
    try:
        counts = token_service.purge_expired(db)
        counts["sessions"] = session_service.purge_expired(db)
    finally:
        db.close()
    logger.info(f"Purge complete: {counts}")


if __name__ == "__main__":
    main()
