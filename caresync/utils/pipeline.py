import logging
from typing import Any, Callable, Dict, Iterable, List, Tuple

from pydantic import ValidationError as ModelValidationError

from caresync.models.glucose import GlucoseReading
from caresync.utils.error_handling import ErrorCollector, ErrorSeverity, ValidationError

logger = logging.getLogger(__name__)

RecordParser = Callable[[Dict[str, Any]], GlucoseReading]


class ReadingPipeline:
    """
    Validates and normalizes a batch of raw provider records into readings.
    A malformed record is skipped and reported; it never aborts the batch.
    """
    def __init__(self, parser: RecordParser, provider: str):
        self.parser = parser
        self.provider = provider

    def process(self, records: Iterable[Dict[str, Any]]) -> Tuple[List[GlucoseReading], ErrorCollector]:
        readings: List[GlucoseReading] = []
        collector = ErrorCollector()
        for idx, record in enumerate(records):
            try:
                readings.append(self.parser(record))
            except ValidationError as e:
                collector.add_error('ValidationError', e.field, f"Record {idx}: {e.message}", ErrorSeverity.LOW)
            except ModelValidationError as e:
                collector.add_error('ValidationError', None, f"Record {idx}: {e.errors()[0]['msg']}", ErrorSeverity.LOW)
        if collector.has_errors():
            logger.info(
                f"Skipped {len(collector.get_errors())} malformed {self.provider} record(s)",
                extra={"log_type": "records_skipped", "provider": self.provider, "skipped": len(collector.get_errors())},
            )
        return readings, collector
