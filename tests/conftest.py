"""Pytest configuration and fixtures for the cost collector tests."""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

from azure_cost_collector.config import CollectorConfig
from azure_cost_collector.cost_management import CostApi
from azure_cost_collector.hierarchy import HierarchyApi
from azure_cost_collector.models import GROUP, SUBSCRIPTION, HierarchyNode, SubscriptionRecord


def group(name, display_name=None, children=None, parent_id=None):
    return HierarchyNode(
        id=f"/providers/Microsoft.Management/managementGroups/{name}",
        name=name,
        display_name=display_name or name,
        kind=GROUP,
        children=list(children or []),
        parent_id=parent_id,
    )


def subscription(subscription_id):
    return HierarchyNode(
        id=f"/subscriptions/{subscription_id}",
        name=subscription_id,
        display_name=f"Subscription {subscription_id}",
        kind=SUBSCRIPTION,
    )


def _shallow(node):
    return HierarchyNode(node.id, node.name, node.display_name, node.kind, parent_id=node.parent_id)


class FakeHierarchyApi(HierarchyApi):
    """In-memory management group tree; methods listed in `fail` raise"""

    def __init__(self, roots=None, parent_chains=None, tenant_root=None, subscription_group_ids=None, fail=()):
        self.roots = list(roots or [])
        self.parent_chains = parent_chains or {}
        self.tenant_root = tenant_root
        self.subscription_group_ids = subscription_group_ids or {}
        self.fail = set(fail)
        self.calls = []
        self.groups = {}

        stack = list(self.roots)
        while stack:
            node = stack.pop()
            if not node.is_group or node.name in self.groups:
                continue
            self.groups[node.name] = node
            for child in node.children:
                if child.parent_id is None:
                    child.parent_id = node.name
                stack.append(child)

    def _record(self, name):
        self.calls.append(name)
        if name in self.fail:
            raise RuntimeError(f"{name} unavailable")

    def get_parent_chain(self, subscription_id):
        self._record('get_parent_chain')
        return self.parent_chains.get(subscription_id, [])

    def list_groups(self):
        self._record('list_groups')
        return [_shallow(root) for root in self.roots]

    def expand_group(self, group_id):
        self._record('expand_group')
        node = self.groups[group_id]
        expanded = _shallow(node)
        expanded.children = [_shallow(child) for child in node.children]
        return expanded

    def get_tenant_root_id(self):
        self._record('get_tenant_root_id')
        return self.tenant_root

    def get_descendant_tree(self, root_group_id):
        self._record('get_descendant_tree')
        return self.groups.get(root_group_id)

    def get_subscription_group_id(self, subscription_id):
        self._record('get_subscription_group_id')
        return self.subscription_group_ids.get(subscription_id)

    def get_group(self, group_id):
        self._record('get_group')
        node = self.groups.get(group_id)
        return _shallow(node) if node is not None else None


class FakeCostApi(CostApi):
    """Returns canned values per method name; exception values are raised"""

    def __init__(self, **responses):
        self.responses = responses
        self.calls = []

    def _respond(self, name):
        self.calls.append(name)
        value = self.responses.get(name, [])
        if isinstance(value, Exception):
            raise value
        return value

    def query_total_cost(self, subscription_id, start_date, end_date):
        return self._respond('query_total_cost')

    def list_usage_detail_costs(self, subscription_id, start_date, end_date):
        return self._respond('list_usage_detail_costs')

    def list_usage_detail_costs_rest(self, subscription_id, start_date, end_date):
        return self._respond('list_usage_detail_costs_rest')

    def list_latest_billing_period_usage(self, subscription_id):
        return self._respond('list_latest_billing_period_usage')

    def list_budget_amounts_rest(self, subscription_id):
        return self._respond('list_budget_amounts_rest')

    def list_budget_amounts(self, subscription_id):
        return self._respond('list_budget_amounts')


class FakeTokenProvider:
    def __init__(self, token="secret-token-value"):
        self.token = token
        self.scopes = []

    def get_token(self, scope):
        self.scopes.append(scope)
        return self.token


def make_response(status_code, body=None, text=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = {}
    response.text = text if text is not None else ("" if body is None else str(body))
    if body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def contoso_tree():
    """Contoso -> Prod -> sub-123, Contoso -> Dev -> sub-456"""
    prod = group("prod", "Prod", children=[subscription("sub-123")])
    dev = group("dev", "Dev", children=[subscription("sub-456")])
    return group("contoso", "Contoso", children=[prod, dev])


@pytest.fixture
def config(tmp_path):
    return CollectorConfig(
        dce_endpoint="https://cost-dce.westeurope-1.ingest.monitor.azure.com",
        dcr_immutable_id="dcr-0123456789abcdef",
        table_name="AzureCostData_CL",
        days_to_analyze=30,
        currency="USD",
        subscription_delay_seconds=0,
        max_retries=0,
        backup_dir=str(tmp_path),
        log_file=None,
    )


@pytest.fixture
def token_provider():
    return FakeTokenProvider()


@pytest.fixture
def make_record():
    def _make(subscription_id="sub-123", cost=500.0, budget=1000.0):
        return SubscriptionRecord.build(
            subscription_id=subscription_id,
            subscription_name=f"Subscription {subscription_id}",
            subscription_state="Enabled",
            period_start=date(2026, 9, 18),
            period_end=date(2026, 10, 18),
            cost_amount=cost,
            budget_amount=budget,
            currency="USD",
            time_generated=datetime(2026, 10, 18, 6, 0, tzinfo=timezone.utc),
        )
    return _make
