#!/usr/bin/env python
"""Create the CareSync DynamoDB tables for local development."""

import logging
import os
import sys

# Add the parent directory to the path so we can import modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from caresync.data.dynamodb import get_dynamodb_client
from caresync.utils.config import get_settings
from caresync.utils.logging_utils import setup_json_logging

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger(__name__)


def main():
    """Create all DynamoDB tables."""
    try:
        client = get_dynamodb_client()
        logger.info("Creating DynamoDB tables...")

        result = client.create_all_tables()

        for table_name, response in result.items():
            status = response.get("TableDescription", response.get("Table", {})).get("TableStatus", "UNKNOWN")
            logger.info(f"Table '{table_name}' status: {status}")

        logger.info("All tables created successfully.")
    except Exception as e:
        logger.error(f"Error creating tables: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
