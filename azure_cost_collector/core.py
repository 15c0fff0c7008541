# Orchestration of the periodic subscription cost collection job

import sys
import time
import logging
import argparse
import concurrent.futures

from .auth import TokenProvider, get_all_subscriptions, get_credential
from .azure_api import AzureManagementApi
from .config import CollectorConfig
from .cost_management import CostBudgetCollector
from .exceptions import AuthenticationError, ConfigurationError, DeliveryError
from .hierarchy import HierarchyResolver
from .ingestion import LogsIngestionClient
from .models import SubscriptionRecord
from .reporting import create_excel_report, export_csv_report
from .utils import RateLimiter, format_currency, setup_logging, utc_now

EXIT_OK = 0
EXIT_DELIVERY_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_AUTH_FAILED = 3


class CostCollectionJob:
    """Resolve hierarchy and cost per subscription, then deliver the batch"""

    def __init__(self, config, resolver, collector, ingestion_client, today=None, clock=time.monotonic):
        self.config = config
        self.resolver = resolver
        self.collector = collector
        self.ingestion_client = ingestion_client
        self.today = today
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def collect_subscription(self, subscription, period_start, period_end):
        subscription_id = subscription['subscription_id']
        group_match = self.resolver.resolve(subscription_id)
        costs = self.collector.collect(subscription_id, period_start, period_end)
        record = SubscriptionRecord.build(
            subscription_id=subscription_id,
            subscription_name=subscription.get('display_name'),
            subscription_state=subscription.get('state'),
            period_start=period_start,
            period_end=period_end,
            cost_amount=costs.cost_amount,
            budget_amount=costs.budget_amount,
            group_match=group_match,
            currency=self.config.currency,
            time_generated=utc_now(),
        )
        self.logger.info(f"{record.subscription_name}: cost {format_currency(record.cost_amount, record.currency)}, "
                         f"budget {format_currency(record.budget_amount, record.currency)}, "
                         f"status {record.budget_status}, group {record.management_group_path}")
        return record

    def collect_all(self, subscriptions):
        """One record per subscription, in input order; failed subscriptions are skipped"""
        period_start, period_end = self.config.reporting_period(self.today)
        self.logger.info(f"Collecting costs for {len(subscriptions)} subscriptions, "
                         f"period {period_start} to {period_end}")

        rate_limiter = RateLimiter(self.config.subscription_delay_seconds)
        deadline = None
        if self.config.job_deadline_seconds:
            deadline = self.clock() + self.config.job_deadline_seconds
        total = len(subscriptions)

        def process(indexed):
            index, subscription = indexed
            subscription_id = subscription['subscription_id']
            if deadline is not None and self.clock() > deadline:
                self.logger.warning(f"Job deadline reached, skipping subscription {subscription_id}")
                return None
            rate_limiter.acquire()
            self.logger.info(f"Processing subscription {index}/{total}: "
                             f"{subscription.get('display_name')} ({subscription_id})")
            try:
                return self.collect_subscription(subscription, period_start, period_end)
            except Exception as e:
                self.logger.error(f"Error processing subscription {subscription_id}: {e}")
                return None

        indexed = list(enumerate(subscriptions, 1))
        if self.config.max_workers > 1:
            with concurrent.futures.ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                results = list(executor.map(process, indexed))
        else:
            results = [process(item) for item in indexed]

        records = [r for r in results if r is not None]
        skipped = total - len(records)
        if skipped:
            self.logger.warning(f"{skipped} of {total} subscriptions were skipped")
        return records

    def deliver(self, records, dry_run=False):
        """Send the batch, raising DeliveryError unless the main payload was accepted"""
        result = self.ingestion_client.send(records, dry_run=dry_run)
        if not result.success:
            raise DeliveryError(
                f"Logs ingestion failed with HTTP {result.status_code}"
                + (f", payload backup at {result.backup_path}" if result.backup_path else ""),
                result=result,
            )
        return result

    def run(self, subscriptions, dry_run=False):
        records = self.collect_all(subscriptions)
        return records, self.deliver(records, dry_run=dry_run)


def build_parser():
    parser = argparse.ArgumentParser(
        description="Collect Azure subscription cost and budget data and send it to Log Analytics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  azure-cost-collector --dce-endpoint https://my-dce.westeurope-1.ingest.monitor.azure.com --dcr-id dcr-0123
  azure-cost-collector --days 7 --subscription-ids sub1 sub2
  azure-cost-collector --dry-run --excel-report costs.xlsx

Settings not given on the command line are read from COST_* environment variables.
        """
    )
    parser.add_argument("--subscription-ids", nargs="+", metavar="SUB_ID", help="Only collect these subscriptions")
    parser.add_argument("--days", type=int, help="Number of days to analyze (default 30)")
    parser.add_argument("--table-name", help="Custom log table name (default AzureCostData_CL)")
    parser.add_argument("--dce-endpoint", help="Data collection endpoint logs ingestion URL")
    parser.add_argument("--dcr-id", help="Immutable id of the data collection rule")
    parser.add_argument("--workspace-id", help="Target Log Analytics workspace id")
    parser.add_argument("--currency", help="Currency code recorded with every row")
    parser.add_argument("--max-workers", type=int, help="Subscriptions processed in parallel (default 1)")
    parser.add_argument("--subscription-delay", type=float, help="Minimum seconds between subscription starts")
    parser.add_argument("--deadline", type=float, help="Overall job deadline in seconds")
    parser.add_argument("--backup-dir", help="Directory for the payload backup file")
    parser.add_argument("--csv-report", help="Also write collected records to this CSV file")
    parser.add_argument("--excel-report", help="Also write an Excel summary report to this file")
    parser.add_argument("--dry-run", action="store_true", help="Collect and back up the payload without sending it")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def _write_reports(records, args, logger):
    if args.csv_report:
        try:
            export_csv_report(records, args.csv_report)
        except Exception as e:
            logger.error(f"Error writing CSV report: {e}")
    if args.excel_report:
        try:
            create_excel_report(records, args.excel_report)
        except Exception as e:
            logger.error(f"Error creating Excel report: {e}")


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        config = CollectorConfig.from_env().apply_args(args)
        config.validate(require_ingestion=not args.dry_run)
    except ConfigurationError as e:
        print(f"\nConfiguration error: {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    logger = setup_logging(config.log_file, logging.DEBUG if args.verbose else logging.INFO)

    print("\n" + "=" * 80)
    print(" AZURE SUBSCRIPTION COST COLLECTOR ".center(80, "="))
    print("=" * 80)
    print(f"Days analyzed:   {config.days_to_analyze}")
    print(f"Target stream:   {config.stream_name}")
    if config.workspace_id:
        print(f"Workspace:       {config.workspace_id}")
    if args.dry_run:
        print("Dry run:         payload will not be sent")
    print("=" * 80)

    try:
        credential = get_credential()
        subscriptions = get_all_subscriptions(credential, config.subscription_ids)
    except AuthenticationError as e:
        logger.error(f"Authentication failed, aborting: {e}")
        sys.exit(EXIT_AUTH_FAILED)

    token_provider = TokenProvider(credential)
    tenant_id = next((s['tenant_id'] for s in subscriptions if s.get('tenant_id')), None)
    api = AzureManagementApi(credential, token_provider, tenant_id=tenant_id,
                             request_timeout=config.request_timeout, max_retries=config.max_retries)
    job = CostCollectionJob(
        config,
        HierarchyResolver(api),
        CostBudgetCollector(api, currency=config.currency),
        LogsIngestionClient(config, token_provider),
    )

    records = job.collect_all(subscriptions)

    delivery_error = None
    try:
        job.deliver(records, dry_run=args.dry_run)
    except DeliveryError as e:
        delivery_error = e
    _write_reports(records, args, logger)

    if delivery_error is not None:
        logger.error(str(delivery_error))
        print("\n" + "=" * 80)
        print(" COLLECTION FAILED ".center(80, "="))
        print("=" * 80)
        sys.exit(EXIT_DELIVERY_FAILED)

    print("\n" + "=" * 80)
    print(f" COLLECTED {len(records)} SUBSCRIPTIONS SUCCESSFULLY ".center(80, "="))
    print("=" * 80)
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
