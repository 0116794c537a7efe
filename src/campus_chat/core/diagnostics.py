import functools
import time
from datetime import datetime

from loguru import logger

# Track store metrics
metrics = {
    "db_operations": 0,
    "errors": 0,
    "last_operation_time": None,
}


def track_db(func):
    """Decorator to count, time and log store operations."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        metrics["db_operations"] += 1
        metrics["last_operation_time"] = datetime.now().isoformat()

        start_time = time.monotonic()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            metrics["errors"] += 1
            logger.error(f"DB ERROR in {func.__name__}: {e}")
            raise

        execution_time = time.monotonic() - start_time
        if isinstance(result, (list, tuple)):
            logger.debug(f"DB OPERATION {func.__name__} completed in {execution_time:.3f}s - returned {len(result)} items")
        else:
            logger.debug(f"DB OPERATION {func.__name__} completed in {execution_time:.3f}s - returned {type(result).__name__}")
        return result

    return wrapper


def get_diagnostics_report() -> str:
    """Get a diagnostics report"""
    report = [
        "==== DIAGNOSTICS REPORT ====",
        f"DB operations: {metrics['db_operations']}",
        f"Errors: {metrics['errors']}",
        f"Last operation time: {metrics['last_operation_time']}",
        f"Current time: {datetime.now().isoformat()}",
    ]
    return "\n".join(report)
