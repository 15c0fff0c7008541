# Azure SDK and ARM REST access for hierarchy, cost and budget lookups

import logging
import threading

from azure.core.exceptions import ResourceNotFoundError
from azure.mgmt.consumption import ConsumptionManagementClient
from azure.mgmt.costmanagement import CostManagementClient
from azure.mgmt.managementgroups import ManagementGroupsAPI
from azure.mgmt.subscription import SubscriptionClient

from .config import MANAGEMENT_SCOPE
from .cost_management import CostApi
from .hierarchy import HierarchyApi
from .models import GROUP, SUBSCRIPTION, HierarchyNode
from .utils import http_with_backoff

ARM_ENDPOINT = "https://management.azure.com"
API_VERSION_USAGE_DETAILS = "2023-05-01"
API_VERSION_BUDGETS = "2023-05-01"
API_VERSION_BILLING_PERIODS = "2018-03-01-preview"
API_VERSION_BILLING_PERIOD_USAGE = "2019-10-01"
API_VERSION_RESOURCE_GRAPH = "2021-03-01"

COST_COLUMNS = ("PreTaxCost", "totalCost", "Cost", "CostUSD")

SUBSCRIPTION_GROUPS_QUERY = (
    "resourcecontainers "
    "| where type =~ 'microsoft.resources/subscriptions' "
    "| project subscriptionId, mgChain = properties.managementGroupAncestorsChain"
)


def _kind_from_type(resource_type):
    resource_type = (resource_type or "").lower()
    if resource_type.endswith("/subscriptions"):
        return SUBSCRIPTION
    return GROUP


def _usage_filter(start_date, end_date):
    return (f"properties/usageStart ge '{start_date.strftime('%Y-%m-%d')}' "
            f"and properties/usageEnd le '{end_date.strftime('%Y-%m-%d')}'")


def _usage_amount(properties):
    for key in ("costInBillingCurrency", "cost", "pretaxCost", "costInPricingCurrency"):
        value = properties.get(key)
        if value is not None:
            return float(value)
    return None


def _chain_to_nodes(chain):
    """Resource Graph ancestor chains list the immediate parent first"""
    nodes = []
    for entry in reversed(chain or []):
        name = entry.get('name')
        if name:
            nodes.append(HierarchyNode(
                id=f"/providers/Microsoft.Management/managementGroups/{name}",
                name=name,
                display_name=entry.get('displayName') or name,
                kind=GROUP,
            ))
    return nodes


class AzureManagementApi(HierarchyApi, CostApi):
    """Hierarchy and cost queries against Azure, with the subscription passed explicitly on every call"""

    def __init__(self, credential, token_provider, tenant_id=None, request_timeout=60.0, max_retries=3):
        self.credential = credential
        self.token_provider = token_provider
        self.tenant_id = tenant_id
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.logger = logging.getLogger(__name__)
        self.mg_client = ManagementGroupsAPI(credential)
        self.cost_client = CostManagementClient(credential)
        self._subscription_groups = None
        self._subscription_groups_lock = threading.Lock()

    # ARM REST

    def _headers(self):
        return {
            'Authorization': f"Bearer {self.token_provider.get_token(MANAGEMENT_SCOPE)}",
            'Content-Type': 'application/json',
        }

    def _arm_request(self, method, url, params=None, json_body=None):
        response = http_with_backoff(method, url, headers=self._headers(), params=params, json_body=json_body,
                                     timeout=self.request_timeout, max_retries=self.max_retries)
        response.raise_for_status()
        return response.json()

    def _arm_get_all(self, url, params=None):
        """GET every page of an ARM list operation"""
        items = []
        while url:
            payload = self._arm_request('GET', url, params=params)
            items.extend(payload.get('value', []))
            url = payload.get('nextLink')
            # nextLink already carries the query string
            params = None
        return items

    def _resource_graph(self, query, subscriptions=None):
        url = f"{ARM_ENDPOINT}/providers/Microsoft.ResourceGraph/resources"
        body = {'query': query, 'options': {'resultFormat': 'objectArray'}}
        if subscriptions:
            body['subscriptions'] = list(subscriptions)
        rows = []
        while True:
            payload = self._arm_request('POST', url, params={'api-version': API_VERSION_RESOURCE_GRAPH}, json_body=body)
            rows.extend(payload.get('data') or [])
            skip_token = payload.get('$skipToken')
            if not skip_token:
                return rows
            body['options']['$skipToken'] = skip_token

    # Hierarchy

    def _to_node(self, item, parent_id=None):
        details = getattr(item, 'details', None)
        parent = getattr(details, 'parent', None) if details is not None else None
        if parent is not None and parent.name:
            parent_id = parent.name
        node = HierarchyNode(
            id=item.id or "",
            name=item.name or "",
            display_name=item.display_name or item.name or "",
            kind=_kind_from_type(item.type),
            parent_id=parent_id,
        )
        for child in getattr(item, 'children', None) or []:
            node.children.append(self._to_node(child, parent_id=node.name))
        return node

    def get_parent_chain(self, subscription_id):
        entities = self.mg_client.entities.list(filter=f"name eq '{subscription_id}'")
        for entity in entities:
            if (entity.name or "").lower() != subscription_id.lower():
                continue
            names = entity.parent_name_chain or []
            display_names = entity.parent_display_name_chain or []
            return [
                HierarchyNode(
                    id=f"/providers/Microsoft.Management/managementGroups/{name}",
                    name=name,
                    display_name=display_names[i] if i < len(display_names) else name,
                    kind=GROUP,
                )
                for i, name in enumerate(names)
            ]
        return []

    def list_subscriptions_with_groups(self):
        with self._subscription_groups_lock:
            if self._subscription_groups is None:
                rows = self._resource_graph(SUBSCRIPTION_GROUPS_QUERY)
                self._subscription_groups = [
                    (row.get('subscriptionId'), _chain_to_nodes(row.get('mgChain')))
                    for row in rows
                ]
                self.logger.debug(f"Resource Graph returned management groups for {len(rows)} subscriptions")
        return self._subscription_groups

    def list_groups(self):
        return [
            HierarchyNode(id=g.id or "", name=g.name, display_name=g.display_name or g.name, kind=GROUP)
            for g in self.mg_client.management_groups.list()
        ]

    def expand_group(self, group_id):
        return self._to_node(self.mg_client.management_groups.get(group_id=group_id, expand="children"))

    def get_tenant_root_id(self):
        if not self.tenant_id:
            tenants = list(SubscriptionClient(self.credential).tenants.list())
            if tenants:
                self.tenant_id = tenants[0].tenant_id
        return self.tenant_id

    def get_descendant_tree(self, root_group_id):
        return self._to_node(self.mg_client.management_groups.get(
            group_id=root_group_id, expand="children", recurse=True))

    def get_subscription_group_id(self, subscription_id):
        query = (
            "resourcecontainers "
            "| where type =~ 'microsoft.resources/subscriptions' "
            f"| where subscriptionId =~ '{subscription_id}' "
            "| project managementGroupId = tostring(properties.managementGroupAncestorsChain[0].name)"
        )
        rows = self._resource_graph(query, subscriptions=[subscription_id])
        if not rows:
            return None
        return rows[0].get('managementGroupId') or None

    def get_group(self, group_id):
        try:
            return self._to_node(self.mg_client.management_groups.get(group_id=group_id))
        except ResourceNotFoundError:
            self.logger.debug(f"Management group {group_id} not found")
            return None

    # Cost

    def query_total_cost(self, subscription_id, start_date, end_date):
        scope = f"/subscriptions/{subscription_id}"
        query_body = {
            "type": "ActualCost",
            "timeframe": "Custom",
            "timePeriod": {
                "from": start_date.strftime("%Y-%m-%dT00:00:00Z"),
                "to": end_date.strftime("%Y-%m-%dT23:59:59Z")
            },
            "dataset": {
                "aggregation": {
                    "totalCost": {
                        "name": "PreTaxCost",
                        "function": "Sum"
                    }
                }
            }
        }
        result = self.cost_client.query.usage(scope=scope, parameters=query_body)
        rows = getattr(result, 'rows', None) or []
        columns = [getattr(c, 'name', None) for c in (getattr(result, 'columns', None) or [])]
        cost_index = next((i for i, name in enumerate(columns) if name in COST_COLUMNS), 0)
        return [float(row[cost_index]) for row in rows if row and row[cost_index] is not None]

    def list_usage_detail_costs(self, subscription_id, start_date, end_date):
        client = ConsumptionManagementClient(self.credential, subscription_id)
        amounts = []
        for item in client.usage_details.list(scope=f"/subscriptions/{subscription_id}",
                                              filter=_usage_filter(start_date, end_date)):
            for attr in ('cost_in_billing_currency', 'cost', 'pretax_cost'):
                value = getattr(item, attr, None)
                if value is not None:
                    amounts.append(float(value))
                    break
        return amounts

    def list_usage_detail_costs_rest(self, subscription_id, start_date, end_date):
        url = f"{ARM_ENDPOINT}/subscriptions/{subscription_id}/providers/Microsoft.Consumption/usageDetails"
        items = self._arm_get_all(url, params={
            'api-version': API_VERSION_USAGE_DETAILS,
            '$filter': _usage_filter(start_date, end_date),
        })
        amounts = [_usage_amount(item.get('properties') or {}) for item in items]
        return [a for a in amounts if a is not None]

    def list_latest_billing_period_usage(self, subscription_id):
        periods_url = f"{ARM_ENDPOINT}/subscriptions/{subscription_id}/providers/Microsoft.Billing/billingPeriods"
        periods = self._arm_get_all(periods_url, params={'api-version': API_VERSION_BILLING_PERIODS})
        if not periods:
            return []
        latest = max(periods, key=lambda p: (p.get('properties') or {}).get('billingPeriodEndDate') or "")
        self.logger.debug(f"Latest billing period for {subscription_id}: {latest.get('name')}")

        usage_url = f"{periods_url}/{latest['name']}/providers/Microsoft.Consumption/usageDetails"
        items = self._arm_get_all(usage_url, params={'api-version': API_VERSION_BILLING_PERIOD_USAGE})
        usage = []
        for item in items:
            properties = item.get('properties') or {}
            amount = _usage_amount(properties)
            usage_date = properties.get('date') or properties.get('usageStart')
            if amount is not None and usage_date:
                usage.append((usage_date, amount))
        return usage

    # Budgets

    def list_budget_amounts_rest(self, subscription_id):
        url = f"{ARM_ENDPOINT}/subscriptions/{subscription_id}/providers/Microsoft.Consumption/budgets"
        budgets = self._arm_get_all(url, params={'api-version': API_VERSION_BUDGETS})
        return [(b.get('properties') or {}).get('amount') for b in budgets]

    def list_budget_amounts(self, subscription_id):
        client = ConsumptionManagementClient(self.credential, subscription_id)
        return [budget.amount for budget in client.budgets.list(scope=f"/subscriptions/{subscription_id}")]
