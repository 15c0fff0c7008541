# Data model for per-subscription cost records and management group hierarchy

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Tuple

from .utils import safe_divide, utc_now

NO_DATA = "No Data"

GROUP = "group"
SUBSCRIPTION = "subscription"

OVER_BUDGET = "Over Budget"
NEAR_LIMIT = "Near Limit"
UNDER_BUDGET = "Under Budget"
NO_BUDGET = "No Budget"

NEAR_LIMIT_THRESHOLD = 85.0
OVER_BUDGET_THRESHOLD = 100.0


def calculate_budget_used_percent(cost_amount, budget_amount):
    """Return cost as a percentage of budget, or None when there is no usable budget"""
    ratio = safe_divide(cost_amount, budget_amount)
    if ratio is None:
        return None
    return round(ratio * 100, 2)


def classify_budget_status(budget_used_percent):
    """
    Classify budget consumption.

    Over Budget: strictly above 100%
    Near Limit: 85% up to and including 100%
    Under Budget: below 85%
    """
    if budget_used_percent is None:
        return NO_BUDGET
    if budget_used_percent > OVER_BUDGET_THRESHOLD:
        return OVER_BUDGET
    if budget_used_percent >= NEAR_LIMIT_THRESHOLD:
        return NEAR_LIMIT
    return UNDER_BUDGET


@dataclass
class HierarchyNode:
    """A management group or subscription in the tenant hierarchy"""
    id: str
    name: str
    display_name: str
    kind: str
    children: List["HierarchyNode"] = field(default_factory=list)
    parent_id: Optional[str] = None

    @property
    def is_group(self):
        return self.kind == GROUP

    @property
    def label(self):
        return self.display_name or self.name


@dataclass(frozen=True)
class GroupMatch:
    """Owning management group of a subscription, path ordered root first"""
    group_name: str
    path: Tuple[str, ...]
    strategy: str = ""

    def __post_init__(self):
        if not self.path:
            raise ValueError("management group path must not be empty")

    @property
    def path_string(self):
        return "/".join(self.path)


@dataclass(frozen=True)
class SubscriptionRecord:
    subscription_id: str
    subscription_name: str
    subscription_state: str
    management_group: str
    management_group_path: str
    cost_amount: float
    budget_amount: Optional[float]
    budget_used_percent: Optional[float]
    budget_status: str
    currency: str
    period_start: date
    period_end: date
    time_generated: datetime

    @classmethod
    def build(cls, subscription_id, subscription_name, subscription_state, period_start, period_end,
              cost_amount=None, budget_amount=None, group_match=None, currency='USD',
              time_generated=None):
        """Build a record, deriving the budget percentage and status from cost and budget"""
        cost = float(cost_amount) if cost_amount is not None else 0.0
        budget = float(budget_amount) if budget_amount is not None else None
        percent = calculate_budget_used_percent(cost, budget)
        if group_match is not None:
            group_name, group_path = group_match.group_name, group_match.path_string
        else:
            group_name, group_path = NO_DATA, NO_DATA
        return cls(
            subscription_id=subscription_id,
            subscription_name=subscription_name or subscription_id,
            subscription_state=str(subscription_state or "Unknown"),
            management_group=group_name,
            management_group_path=group_path,
            cost_amount=round(cost, 2),
            budget_amount=budget,
            budget_used_percent=percent,
            budget_status=classify_budget_status(percent),
            currency=currency,
            period_start=period_start,
            period_end=period_end,
            time_generated=time_generated or utc_now(),
        )

    def to_log_entry(self):
        """Row shape expected by the custom Log Analytics table"""
        return {
            'TimeGenerated': self.time_generated.strftime('%Y-%m-%dT%H:%M:%S.%fZ'),
            'SubscriptionId': self.subscription_id,
            'SubscriptionName': self.subscription_name,
            'SubscriptionState': self.subscription_state,
            'ManagementGroup': self.management_group,
            'ManagementGroupPath': self.management_group_path,
            'CostAmount': self.cost_amount,
            'BudgetAmount': self.budget_amount,
            'BudgetUsedPercent': self.budget_used_percent,
            'BudgetStatus': self.budget_status,
            'Currency': self.currency,
            'PeriodStart': self.period_start.isoformat(),
            'PeriodEnd': self.period_end.isoformat(),
        }
