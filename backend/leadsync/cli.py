import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .config import Settings, setup_logging
from .jobs import JOB_NAMES, run_job

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="leadsync", description="Call ingestion, enrichment and booking sync jobs")
    parser.add_argument("job", choices=JOB_NAMES, help="job to run")
    parser.add_argument("--env-file", default=None, help="path to a .env file")
    args = parser.parse_args(argv)

    settings = Settings.from_env(args.env_file)
    setup_logging(settings.log_level)

    logger.info(f"Starting {args.job} job")
    try:
        report = asyncio.run(run_job(args.job, settings))
    except Exception as e:
        logger.exception(f"{args.job} job failed: {str(e)}")
        return 1

    print(json.dumps(report, indent=2, default=str))
    if report.get("aborted"):
        logger.error(f"{args.job} job aborted")
        return 1
    logger.info(f"{args.job} job completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
