# This file marks the azure_cost_collector directory as a Python package.

"""
Azure Subscription Cost Collector

Periodic job that gathers, for every accessible subscription:
- the owning management group and its path from the tenant root
- total cost over the analysis window and the configured budget
- budget consumption percentage and status

and sends the batch to a Log Analytics custom table through the
Azure Monitor Logs Ingestion API.

Main modules:
- core: Job orchestration and command line entry point
- auth: Azure authentication and subscription discovery
- hierarchy: Management group resolution
- cost_management: Cost and budget retrieval
- ingestion: Logs Ingestion API delivery
- reporting: Payload backup and CSV/Excel export
"""

__version__ = "1.0.0"

from .core import CostCollectionJob, main
from .hierarchy import HierarchyResolver
from .cost_management import CostBudgetCollector
from .ingestion import LogsIngestionClient
from .models import SubscriptionRecord
from .utils import setup_logging

__all__ = [
    'CostCollectionJob',
    'CostBudgetCollector',
    'HierarchyResolver',
    'LogsIngestionClient',
    'SubscriptionRecord',
    'main',
    'setup_logging',
]
