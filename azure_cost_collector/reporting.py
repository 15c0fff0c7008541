# Local payload backup and CSV/Excel export of collected cost records

import os
import logging
from datetime import datetime

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, PatternFill
from openpyxl.utils import get_column_letter

from .models import NEAR_LIMIT, NO_BUDGET, OVER_BUDGET, UNDER_BUDGET
from .utils import get_timestamp

STATUS_FILLS = {
    OVER_BUDGET: "F8CBAD",
    NEAR_LIMIT: "FFE699",
    UNDER_BUDGET: "C6EFCE",
}


def write_payload_backup(payload, directory='.', timestamp=None):
    """Write the serialized ingestion payload to disk and return its path"""
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, f"cost_ingestion_payload_{timestamp or get_timestamp()}.json")
    with open(path, 'w', encoding='utf-8') as f:
        f.write(payload)
    logging.getLogger(__name__).info(f"Payload backup written to {os.path.abspath(path)}")
    return path


def records_to_dataframe(records):
    """One row per subscription using the ingestion column names"""
    return pd.DataFrame([record.to_log_entry() for record in records])


def export_csv_report(records, output_file):
    logger = logging.getLogger(__name__)
    df = records_to_dataframe(records)
    df.to_csv(output_file, index=False)
    logger.info(f"CSV report saved to: {output_file}")
    return output_file


def create_excel_report(records, output_file):
    """Create an Excel report with a summary sheet and a per-subscription sheet"""
    logger = logging.getLogger(__name__)
    df = records_to_dataframe(records)

    workbook = Workbook()
    workbook.remove(workbook.active)
    _create_summary_sheet(workbook, df)
    _create_subscriptions_sheet(workbook, df)

    workbook.save(output_file)
    logger.info(f"Excel report saved to: {output_file}")
    return output_file


def _header_row(sheet, row, headers):
    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="305496", end_color="305496", fill_type="solid")
    for col, header in enumerate(headers, 1):
        cell = sheet.cell(row=row, column=col, value=header)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal='center')


def _create_summary_sheet(workbook, df):
    sheet = workbook.create_sheet("Summary")
    sheet['A1'] = "Azure Subscription Cost Summary"
    sheet['A1'].font = Font(bold=True, size=16)
    sheet.merge_cells('A1:C1')
    sheet['A2'] = f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
    sheet['A2'].font = Font(italic=True, color="666666")

    if df.empty:
        sheet['A4'] = "No subscriptions collected"
        return

    currency = df['Currency'].iloc[0]
    budgeted = df[df['BudgetAmount'].notna()]
    summary_data = [
        ['Subscriptions', len(df)],
        ['Period', f"{df['PeriodStart'].min()} to {df['PeriodEnd'].max()}"],
        [f'Total Cost ({currency})', round(float(df['CostAmount'].sum()), 2)],
        [f'Total Budget ({currency})', round(float(budgeted['BudgetAmount'].sum()), 2)],
    ]
    status_counts = df['BudgetStatus'].value_counts()
    for status in (OVER_BUDGET, NEAR_LIMIT, UNDER_BUDGET, NO_BUDGET):
        summary_data.append([status, int(status_counts.get(status, 0))])

    _header_row(sheet, 4, ['Metric', 'Value'])
    for i, (metric, value) in enumerate(summary_data, start=5):
        sheet.cell(row=i, column=1, value=metric).font = Font(bold=True)
        sheet.cell(row=i, column=2, value=value)
    sheet.column_dimensions['A'].width = 24
    sheet.column_dimensions['B'].width = 28


def _create_subscriptions_sheet(workbook, df):
    sheet = workbook.create_sheet("Subscriptions")
    headers = list(df.columns) if not df.empty else ['SubscriptionId']
    _header_row(sheet, 1, headers)

    status_col = headers.index('BudgetStatus') + 1 if 'BudgetStatus' in headers else None
    for row_idx, row in enumerate(df.itertuples(index=False), start=2):
        for col_idx, value in enumerate(row, start=1):
            sheet.cell(row=row_idx, column=col_idx, value=None if pd.isna(value) else value)
        if status_col:
            color = STATUS_FILLS.get(row[status_col - 1])
            if color:
                sheet.cell(row=row_idx, column=status_col).fill = PatternFill(
                    start_color=color, end_color=color, fill_type="solid")

    for col_idx, header in enumerate(headers, start=1):
        sheet.column_dimensions[get_column_letter(col_idx)].width = max(14, len(header) + 4)
    sheet.freeze_panes = 'A2'
