"""Tests for the Azure SDK and ARM REST adapter."""

from datetime import date
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import ResourceNotFoundError
from conftest import FakeTokenProvider, make_response

from azure_cost_collector.azure_api import AzureManagementApi
from azure_cost_collector.config import MANAGEMENT_SCOPE
from azure_cost_collector.models import GROUP, SUBSCRIPTION

START = date(2026, 9, 18)
END = date(2026, 10, 18)
REQUEST = "azure_cost_collector.utils.requests.request"


@pytest.fixture
def sdk():
    with patch("azure_cost_collector.azure_api.ManagementGroupsAPI") as mg_cls, \
            patch("azure_cost_collector.azure_api.CostManagementClient") as cost_cls, \
            patch("azure_cost_collector.azure_api.ConsumptionManagementClient") as consumption_cls:
        yield SimpleNamespace(
            mg=mg_cls.return_value,
            cost=cost_cls.return_value,
            consumption_cls=consumption_cls,
            consumption=consumption_cls.return_value,
        )


@pytest.fixture
def api(sdk):
    return AzureManagementApi(MagicMock(), FakeTokenProvider("arm-token"), tenant_id="tenant-root", max_retries=0)


def mg_child(name, display_name, child_type, children=None):
    return SimpleNamespace(id=f"/x/{name}", name=name, display_name=display_name, type=child_type,
                           children=children)


class TestHierarchyCalls:
    """Test conversion of management group SDK models."""

    def test_parent_chain_from_entities(self, api, sdk):
        sdk.mg.entities.list.return_value = [
            SimpleNamespace(name="other-sub", parent_name_chain=["x"], parent_display_name_chain=["X"]),
            SimpleNamespace(name="SUB-123", parent_name_chain=["contoso", "prod"],
                            parent_display_name_chain=["Contoso", "Prod"]),
        ]
        chain = api.get_parent_chain("sub-123")

        assert [node.label for node in chain] == ["Contoso", "Prod"]
        assert all(node.kind == GROUP for node in chain)
        sdk.mg.entities.list.assert_called_once_with(filter="name eq 'sub-123'")

    def test_expand_group_sets_kinds_and_parents(self, api, sdk):
        sdk.mg.management_groups.get.return_value = SimpleNamespace(
            id="/providers/Microsoft.Management/managementGroups/prod",
            name="prod",
            display_name="Prod",
            type="Microsoft.Management/managementGroups",
            details=SimpleNamespace(parent=SimpleNamespace(name="contoso")),
            children=[
                mg_child("sub-123", "Payments", "/subscriptions"),
                mg_child("prod-eu", "Prod EU", "Microsoft.Management/managementGroups"),
            ],
        )
        node = api.expand_group("prod")

        assert node.parent_id == "contoso"
        assert [(c.name, c.kind, c.parent_id) for c in node.children] == [
            ("sub-123", SUBSCRIPTION, "prod"),
            ("prod-eu", GROUP, "prod"),
        ]
        sdk.mg.management_groups.get.assert_called_once_with(group_id="prod", expand="children")

    def test_missing_group_returns_none(self, api, sdk):
        sdk.mg.management_groups.get.side_effect = ResourceNotFoundError("gone")
        assert api.get_group("missing") is None

    def test_tenant_root(self, api):
        assert api.get_tenant_root_id() == "tenant-root"

    def test_subscription_listing_reverses_resource_graph_chain(self, api):
        graph = make_response(200, body={'data': [
            {'subscriptionId': 'sub-123', 'mgChain': [
                {'name': 'prod', 'displayName': 'Prod'},
                {'name': 'contoso', 'displayName': 'Contoso'},
            ]},
        ]})
        with patch(REQUEST, return_value=graph) as mock_request:
            listing = api.list_subscriptions_with_groups()
            api.list_subscriptions_with_groups()

        sub_id, ancestors = listing[0]
        assert sub_id == "sub-123"
        assert [node.label for node in ancestors] == ["Contoso", "Prod"]
        assert mock_request.call_count == 1
        assert mock_request.call_args.kwargs['headers']['Authorization'] == "Bearer arm-token"

    def test_subscription_group_id_from_resource_graph(self, api):
        graph = make_response(200, body={'data': [{'managementGroupId': 'prod'}]})
        with patch(REQUEST, return_value=graph) as mock_request:
            assert api.get_subscription_group_id("sub-123") == "prod"

        body = mock_request.call_args.kwargs['json']
        assert body['subscriptions'] == ["sub-123"]
        assert "sub-123" in body['query']


class TestCostCalls:
    """Test cost and budget queries."""

    def test_cost_query_reads_cost_column(self, api, sdk):
        sdk.cost.query.usage.return_value = SimpleNamespace(
            columns=[SimpleNamespace(name="Currency"), SimpleNamespace(name="PreTaxCost")],
            rows=[["USD", 120.5], ["USD", None]],
        )
        assert api.query_total_cost("sub-1", START, END) == [120.5]

        kwargs = sdk.cost.query.usage.call_args.kwargs
        assert kwargs['scope'] == "/subscriptions/sub-1"
        assert kwargs['parameters']['timePeriod'] == {
            'from': "2026-09-18T00:00:00Z",
            'to': "2026-10-18T23:59:59Z",
        }

    def test_usage_details_client_is_scoped_per_subscription(self, api, sdk):
        sdk.consumption.usage_details.list.return_value = [
            SimpleNamespace(cost_in_billing_currency=None, cost=1.5),
            SimpleNamespace(cost_in_billing_currency=2.5),
        ]
        assert api.list_usage_detail_costs("sub-1", START, END) == [1.5, 2.5]

        assert sdk.consumption_cls.call_args.args[1] == "sub-1"
        kwargs = sdk.consumption.usage_details.list.call_args.kwargs
        assert kwargs['scope'] == "/subscriptions/sub-1"
        assert kwargs['filter'] == ("properties/usageStart ge '2026-09-18' "
                                    "and properties/usageEnd le '2026-10-18'")

    def test_usage_details_rest_follows_next_link(self, api):
        pages = [
            make_response(200, body={'value': [{'properties': {'cost': 10}}],
                                     'nextLink': "https://management.azure.com/next?page=2"}),
            make_response(200, body={'value': [{'properties': {'costInBillingCurrency': 5}}, {'properties': {}}]}),
        ]
        with patch(REQUEST, side_effect=pages) as mock_request:
            assert api.list_usage_detail_costs_rest("sub-1", START, END) == [10.0, 5.0]

        first, second = mock_request.call_args_list
        assert first.kwargs['params']['$filter'].startswith("properties/usageStart ge '2026-09-18'")
        assert second.args[1] == "https://management.azure.com/next?page=2"
        assert second.kwargs['params'] is None

    def test_latest_billing_period_usage(self, api):
        periods = make_response(200, body={'value': [
            {'name': '202608-1', 'properties': {'billingPeriodEndDate': '2026-08-31'}},
            {'name': '202609-1', 'properties': {'billingPeriodEndDate': '2026-09-30'}},
        ]})
        usage = make_response(200, body={'value': [
            {'properties': {'date': '2026-09-20T00:00:00Z', 'pretaxCost': 3.0}},
            {'properties': {'usageStart': '2026-09-21T00:00:00Z', 'cost': 4.0}},
        ]})
        with patch(REQUEST, side_effect=[periods, usage]) as mock_request:
            rows = api.list_latest_billing_period_usage("sub-1")

        assert rows == [('2026-09-20T00:00:00Z', 3.0), ('2026-09-21T00:00:00Z', 4.0)]
        assert "/billingPeriods/202609-1/providers/Microsoft.Consumption/usageDetails" in \
            mock_request.call_args_list[1].args[1]

    def test_rest_error_raises(self, api):
        error = make_response(403, text="Forbidden")
        error.raise_for_status.side_effect = Exception("403 Forbidden")
        with patch(REQUEST, return_value=error):
            with pytest.raises(Exception, match="403"):
                api.list_budget_amounts_rest("sub-1")

    def test_budgets(self, api, sdk):
        budgets = make_response(200, body={'value': [{'properties': {'amount': 1000}}]})
        with patch(REQUEST, return_value=budgets):
            assert api.list_budget_amounts_rest("sub-1") == [1000]

        sdk.consumption.budgets.list.return_value = [SimpleNamespace(amount=250.0)]
        assert api.list_budget_amounts("sub-1") == [250.0]
        sdk.consumption.budgets.list.assert_called_once_with(scope="/subscriptions/sub-1")

    def test_rest_calls_use_management_scope(self, api):
        with patch(REQUEST, return_value=make_response(200, body={'value': []})):
            api.list_budget_amounts_rest("sub-1")
        assert api.token_provider.scopes == [MANAGEMENT_SCOPE]
