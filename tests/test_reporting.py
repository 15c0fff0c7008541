"""Tests for payload backup and local report export."""

import json

import pandas as pd
from openpyxl import load_workbook

from azure_cost_collector.models import NEAR_LIMIT, NO_BUDGET, OVER_BUDGET
from azure_cost_collector.reporting import (
    create_excel_report,
    export_csv_report,
    records_to_dataframe,
    write_payload_backup,
)


class TestPayloadBackup:
    """Test backup file writing."""

    def test_writes_payload_verbatim(self, tmp_path):
        payload = json.dumps([{'SubscriptionId': 'sub-1'}])
        path = write_payload_backup(payload, str(tmp_path), timestamp="20261018_060000")

        assert path.endswith("cost_ingestion_payload_20261018_060000.json")
        with open(path, encoding='utf-8') as f:
            assert f.read() == payload

    def test_creates_missing_directory(self, tmp_path):
        path = write_payload_backup("[]", str(tmp_path / "backups" / "cost"))
        with open(path, encoding='utf-8') as f:
            assert f.read() == "[]"


class TestReports:
    """Test CSV and Excel exports."""

    def test_dataframe_uses_ingestion_columns(self, make_record):
        df = records_to_dataframe([make_record("a"), make_record("b", budget=None)])

        assert list(df['SubscriptionId']) == ["a", "b"]
        assert 'BudgetUsedPercent' in df.columns
        assert df.loc[1, 'BudgetStatus'] == NO_BUDGET

    def test_csv_export(self, tmp_path, make_record):
        output = tmp_path / "costs.csv"
        export_csv_report([make_record(cost=1200.0)], str(output))

        df = pd.read_csv(output)
        assert df.loc[0, 'CostAmount'] == 1200.0
        assert df.loc[0, 'BudgetStatus'] == OVER_BUDGET

    def test_excel_report_sheets(self, tmp_path, make_record):
        output = tmp_path / "costs.xlsx"
        records = [make_record("a", cost=1200.0), make_record("b", cost=900.0), make_record("c", budget=None)]
        create_excel_report(records, str(output))

        workbook = load_workbook(output)
        assert workbook.sheetnames == ["Summary", "Subscriptions"]

        summary = {row[0]: row[1] for row in workbook["Summary"].iter_rows(min_row=5, values_only=True)}
        assert summary['Subscriptions'] == 3
        assert summary['Total Cost (USD)'] == 2600.0
        assert summary[OVER_BUDGET] == 1
        assert summary[NEAR_LIMIT] == 1
        assert summary[NO_BUDGET] == 1

        subscriptions = workbook["Subscriptions"]
        assert subscriptions.max_row == 4
        assert subscriptions.cell(row=1, column=1).value == "TimeGenerated"

    def test_excel_report_without_records(self, tmp_path):
        output = tmp_path / "empty.xlsx"
        create_excel_report([], str(output))
        assert load_workbook(output)["Summary"]["A4"].value == "No subscriptions collected"
