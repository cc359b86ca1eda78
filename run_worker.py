"""
Scheduling Background Worker Runner
Run this as a separate process: python run_worker.py
(equivalent to: arq frame_scheduler.worker.WorkerSettings)
"""

import logging
import sys

from arq.worker import run_worker

from frame_scheduler.worker import WorkerSettings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logger.info("🚀 Starting scheduling background worker...")
    try:
        run_worker(WorkerSettings)
    except KeyboardInterrupt:
        logger.info("👋 Scheduling worker stopped by user")
    except Exception as e:
        logger.error(f"❌ Scheduling worker crashed: {e}")
        sys.exit(1)
