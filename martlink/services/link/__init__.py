"""Link service module with validation and bulk-run components."""

from martlink.services.link.batch import BatchError, BatchResult, LinkTask, run_with_concurrency
from martlink.services.link.validation import LinkValidator

__all__ = ["LinkValidator", "LinkTask", "BatchError", "BatchResult", "run_with_concurrency"]
