"""Repository for glucose readings."""

import logging
from datetime import datetime
from typing import List, Optional

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from caresync.data.dynamodb import get_dynamodb_client
from caresync.models.glucose import GlucoseReading, ReadingSource
from caresync.utils.config import get_settings
from caresync.utils.timestamps import to_storage_timestamp

logger = logging.getLogger(__name__)
settings = get_settings()

# DynamoDB can only handle batches of 25 items at a time
BATCH_SIZE = 25


class GlucoseReadingRepository:
    """Repository for glucose readings in DynamoDB."""

    def __init__(self):
        self.dynamodb = get_dynamodb_client()
        self.table_name = settings.dynamodb_readings_table

    def insert_readings(self, readings: List[GlucoseReading]) -> List[GlucoseReading]:
        """
        Persist readings in batches.

        Args:
            readings: The readings to store

        Returns:
            List[GlucoseReading]: The readings whose batch was written
        """
        table = self.dynamodb.get_table(self.table_name)
        successful_readings = []

        for i in range(0, len(readings), BATCH_SIZE):
            batch = readings[i:i + BATCH_SIZE]
            try:
                with table.batch_writer(overwrite_by_pkeys=["user_id", "timestamp"]) as batch_writer:
                    for reading in batch:
                        batch_writer.put_item(Item=reading.to_dynamodb_item())
                successful_readings.extend(batch)
            except ClientError as e:
                logger.error(f"Error batch creating glucose readings: {e}")
                # Continue with the rest of the batches; unwritten readings are refetched next sync

        return successful_readings

    def find_readings(
        self,
        user_id: str,
        start_time: datetime,
        end_time: datetime,
        source: Optional[ReadingSource] = None
    ) -> List[GlucoseReading]:
        """
        Get an owner's readings in [start_time, end_time], oldest first.

        Args:
            user_id: The owner
            start_time: The start time (inclusive)
            end_time: The end time (inclusive)
            source: Only readings ingested from this source

        Returns:
            List[GlucoseReading]: The readings in ascending time order
        """
        key_condition = Key("user_id").eq(user_id) & Key("timestamp").between(
            to_storage_timestamp(start_time), to_storage_timestamp(end_time)
        )
        filter_expression = Attr("source").eq(source.value) if source else None
        try:
            items = self.dynamodb.query_items(
                self.table_name, key_condition, filter_expression=filter_expression, scan_index_forward=True
            )
            return [GlucoseReading.from_dynamodb_item(item) for item in items]
        except ClientError as e:
            logger.error(f"Error querying glucose readings: {e}")
            raise

    def latest_reading(self, user_id: str, source: Optional[ReadingSource] = None) -> Optional[GlucoseReading]:
        """Most recent reading for an owner, optionally restricted to one source."""
        filter_expression = Attr("source").eq(source.value) if source else None
        try:
            items = self.dynamodb.query_items(
                self.table_name,
                Key("user_id").eq(user_id),
                filter_expression=filter_expression,
                scan_index_forward=False,
                limit=None if source else 1,
            )
            for item in items:
                return GlucoseReading.from_dynamodb_item(item)
            return None
        except ClientError as e:
            logger.error(f"Error querying latest glucose reading: {e}")
            raise


# Singleton instance
_glucose_repository: Optional[GlucoseReadingRepository] = None


def get_glucose_repository() -> GlucoseReadingRepository:
    """
    Get a singleton instance of the glucose reading repository.

    Returns:
        GlucoseReadingRepository: The glucose reading repository
    """
    global _glucose_repository
    if _glucose_repository is None:
        _glucose_repository = GlucoseReadingRepository()
    return _glucose_repository
