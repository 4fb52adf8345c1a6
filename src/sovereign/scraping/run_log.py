"""Per-job log capture for scraper jobs.

While a job runs, a JobLogHandler is attached to the ``sovereign`` logger
and keeps the lines that belong to that job. The joined text becomes the
result's ``log_output``.
"""

import logging
from datetime import datetime, timezone

MAX_LOG_LINES = 5000


class JobLogHandler(logging.Handler):
    """Buffers records that belong to one job or its jurisdiction.

    Adapters and the job both log with a ``jurisdiction`` extra; records
    from other jurisdictions running concurrently are ignored.
    """

    def __init__(self, job_id: str, jurisdiction_id: str, max_lines: int = MAX_LOG_LINES):
        super().__init__()
        self.job_id = job_id
        self.jurisdiction_id = jurisdiction_id
        self.max_lines = max_lines
        self.lines: list[str] = []
        self.truncated = False
        self.setFormatter(logging.Formatter("%(message)s"))

    def filter(self, record: logging.LogRecord) -> bool:
        return (
            getattr(record, "job_id", None) == self.job_id
            or getattr(record, "jurisdiction", None) == self.jurisdiction_id
        )

    def emit(self, record: logging.LogRecord) -> None:
        if self.truncated:
            return
        try:
            stamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
            if len(self.lines) >= self.max_lines:
                self.lines.append(f"{stamp} [WARNING] Log output truncated at {self.max_lines} lines")
                self.truncated = True
                return
            self.lines.append(f"{stamp} [{record.levelname:>7s}] {self.format(record)}")
        except Exception:
            self.handleError(record)

    def text(self) -> str:
        return "\n".join(self.lines)
