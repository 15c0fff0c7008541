"""Configuration for the cost collection job.

Values come from environment variables (the way the job runs under a
scheduler) and can be overridden from the command line.
"""

import os
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional

from .exceptions import ConfigurationError

INGESTION_API_VERSION = "2023-01-01"
MANAGEMENT_SCOPE = "https://management.azure.com/.default"
MONITOR_SCOPE = "https://monitor.azure.com/.default"

DEFAULT_TABLE_NAME = "AzureCostData_CL"
DEFAULT_LOG_FILE = "azure_cost_collector.log"


def _env_int(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'")


def _env_float(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'")


def _split_ids(raw):
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class CollectorConfig:
    dce_endpoint: str = ""
    dcr_immutable_id: str = ""
    table_name: str = DEFAULT_TABLE_NAME
    workspace_id: str = ""
    days_to_analyze: int = 30
    currency: str = "USD"
    subscription_ids: List[str] = field(default_factory=list)
    max_workers: int = 1
    subscription_delay_seconds: float = 2.0
    request_timeout: float = 60.0
    max_retries: int = 3
    job_deadline_seconds: Optional[float] = None
    backup_dir: str = "."
    log_file: Optional[str] = DEFAULT_LOG_FILE

    @classmethod
    def from_env(cls):
        deadline = _env_float("COST_JOB_DEADLINE", None)
        return cls(
            dce_endpoint=os.getenv("COST_DCE_ENDPOINT", ""),
            dcr_immutable_id=os.getenv("COST_DCR_IMMUTABLE_ID", ""),
            table_name=os.getenv("COST_TABLE_NAME") or DEFAULT_TABLE_NAME,
            workspace_id=os.getenv("COST_WORKSPACE_ID", ""),
            days_to_analyze=_env_int("COST_DAYS_TO_ANALYZE", 30),
            currency=os.getenv("COST_CURRENCY") or "USD",
            subscription_ids=_split_ids(os.getenv("COST_SUBSCRIPTION_IDS")),
            max_workers=_env_int("COST_MAX_WORKERS", 1),
            subscription_delay_seconds=_env_float("COST_SUBSCRIPTION_DELAY", 2.0),
            request_timeout=_env_float("COST_REQUEST_TIMEOUT", 60.0),
            max_retries=_env_int("COST_MAX_RETRIES", 3),
            job_deadline_seconds=deadline,
            backup_dir=os.getenv("COST_BACKUP_DIR") or ".",
            log_file=os.getenv("COST_LOG_FILE", DEFAULT_LOG_FILE) or None,
        )

    def apply_args(self, args):
        """Overlay command line arguments that were explicitly given"""
        overrides = {
            'dce_endpoint': getattr(args, 'dce_endpoint', None),
            'dcr_immutable_id': getattr(args, 'dcr_id', None),
            'table_name': getattr(args, 'table_name', None),
            'workspace_id': getattr(args, 'workspace_id', None),
            'days_to_analyze': getattr(args, 'days', None),
            'currency': getattr(args, 'currency', None),
            'subscription_ids': getattr(args, 'subscription_ids', None),
            'max_workers': getattr(args, 'max_workers', None),
            'subscription_delay_seconds': getattr(args, 'subscription_delay', None),
            'job_deadline_seconds': getattr(args, 'deadline', None),
            'backup_dir': getattr(args, 'backup_dir', None),
        }
        for name, value in overrides.items():
            if value is not None:
                setattr(self, name, value)
        return self

    def validate(self, require_ingestion=True):
        if require_ingestion:
            if not self.dce_endpoint:
                raise ConfigurationError("Data collection endpoint is required (COST_DCE_ENDPOINT or --dce-endpoint)")
            if not self.dce_endpoint.lower().startswith("https://"):
                raise ConfigurationError(f"Data collection endpoint must be an https URL: {self.dce_endpoint}")
            if not self.dcr_immutable_id:
                raise ConfigurationError("Data collection rule id is required (COST_DCR_IMMUTABLE_ID or --dcr-id)")
        if not self.table_name:
            raise ConfigurationError("Table name must not be empty")
        if self.days_to_analyze < 1:
            raise ConfigurationError(f"Days to analyze must be at least 1, got {self.days_to_analyze}")
        if self.max_workers < 1:
            raise ConfigurationError(f"Max workers must be at least 1, got {self.max_workers}")
        return self

    def reporting_period(self, today=None):
        """(start, end) calendar dates covering the last days_to_analyze days"""
        end = today or date.today()
        return end - timedelta(days=self.days_to_analyze), end

    @property
    def stream_name(self):
        if self.table_name.startswith("Custom-"):
            return self.table_name
        return f"Custom-{self.table_name}"
