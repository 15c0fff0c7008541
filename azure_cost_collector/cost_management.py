# Azure cost and budget retrieval per subscription

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from dateutil import parser as date_parser

from .utils import format_currency


class CostApi(ABC):
    """Read-only cost and budget queries, every call scoped to one subscription"""

    @abstractmethod
    def query_total_cost(self, subscription_id, start_date, end_date):
        """Pre-aggregated cost rows from the Cost Management query API"""

    @abstractmethod
    def list_usage_detail_costs(self, subscription_id, start_date, end_date):
        """Per-line usage detail costs from the consumption client"""

    @abstractmethod
    def list_usage_detail_costs_rest(self, subscription_id, start_date, end_date):
        """Per-line usage detail costs from the ARM REST endpoint"""

    @abstractmethod
    def list_latest_billing_period_usage(self, subscription_id):
        """(usage date, cost) pairs for the most recent billing period"""

    @abstractmethod
    def list_budget_amounts_rest(self, subscription_id):
        """Budget amounts from the ARM REST budgets endpoint"""

    @abstractmethod
    def list_budget_amounts(self, subscription_id):
        """Budget amounts from the consumption client"""


@dataclass(frozen=True)
class CostResult:
    cost_amount: float
    budget_amount: Optional[float]
    cost_source: Optional[str] = None
    budget_source: Optional[str] = None


def _as_date(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date_parser.isoparse(str(value)).date()


class CostBudgetCollector:
    """Collect total spend and configured budget for a subscription and period"""

    def __init__(self, api, currency='USD'):
        self.api = api
        self.currency = currency
        self.logger = logging.getLogger(__name__)
        self.cost_strategies = [
            ('cost_query', self._cost_from_query),
            ('usage_details', self._cost_from_usage_details),
            ('usage_details_rest', self._cost_from_usage_details_rest),
            ('billing_period', self._cost_from_billing_period),
        ]
        self.budget_strategies = [
            ('budgets_rest', self.api.list_budget_amounts_rest),
            ('budgets_client', self.api.list_budget_amounts),
        ]

    def collect(self, subscription_id, start_date, end_date):
        cost_amount, cost_source = self.get_cost(subscription_id, start_date, end_date)
        budget_amount, budget_source = self.get_budget(subscription_id)
        return CostResult(cost_amount, budget_amount, cost_source, budget_source)

    def get_cost(self, subscription_id, start_date, end_date):
        """Total cost for the period and the name of the source that produced it"""
        for name, strategy in self.cost_strategies:
            try:
                amounts = [float(a) for a in strategy(subscription_id, start_date, end_date) or [] if a is not None]
            except Exception as e:
                self.logger.warning(f"Cost lookup '{name}' failed for {subscription_id}: {e}")
                continue
            if amounts:
                total = sum(amounts)
                self.logger.info(f"Cost for {subscription_id} from {name}: "
                                 f"{format_currency(total, self.currency)} ({len(amounts)} data points)")
                return total, name
            self.logger.debug(f"Cost lookup '{name}' returned no data for {subscription_id}")

        self.logger.info(f"No cost data found for {subscription_id} between {start_date} and {end_date}, using 0")
        return 0.0, None

    def get_budget(self, subscription_id):
        """First configured budget amount, or None when the subscription has no budget"""
        for name, strategy in self.budget_strategies:
            try:
                amounts = [float(a) for a in strategy(subscription_id) or [] if a is not None]
            except Exception as e:
                self.logger.warning(f"Budget lookup '{name}' failed for {subscription_id}: {e}")
                continue
            if amounts:
                budget = amounts[0]
                self.logger.info(f"Budget for {subscription_id} from {name}: {format_currency(budget, self.currency)}")
                return budget, name

        self.logger.info(f"No budget configured for {subscription_id}")
        return None, None

    def _cost_from_query(self, subscription_id, start_date, end_date):
        return self.api.query_total_cost(subscription_id, start_date, end_date)

    def _cost_from_usage_details(self, subscription_id, start_date, end_date):
        return self.api.list_usage_detail_costs(subscription_id, start_date, end_date)

    def _cost_from_usage_details_rest(self, subscription_id, start_date, end_date):
        return self.api.list_usage_detail_costs_rest(subscription_id, start_date, end_date)

    def _cost_from_billing_period(self, subscription_id, start_date, end_date):
        amounts = []
        for usage_date, amount in self.api.list_latest_billing_period_usage(subscription_id) or []:
            day = _as_date(usage_date)
            if day is not None and start_date <= day <= end_date:
                amounts.append(amount)
        return amounts
