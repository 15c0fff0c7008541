# Delivery of cost records to the Azure Monitor Logs Ingestion API

import json
import logging
from dataclasses import dataclass
from typing import Optional

import requests

from .config import INGESTION_API_VERSION, MONITOR_SCOPE
from .exceptions import AuthenticationError
from .reporting import write_payload_backup
from .utils import http_with_backoff, utc_now

MAX_LOGGED_BODY = 2000


@dataclass
class IngestionResult:
    success: bool
    record_count: int = 0
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    backup_path: Optional[str] = None
    fallback_attempted: bool = False
    fallback_succeeded: bool = False


def serialize_records(records):
    """JSON array of log entries; a single record is still wrapped in an array"""
    return json.dumps([record.to_log_entry() for record in records])


def diagnostic_payload():
    return json.dumps([{'TimeGenerated': utc_now().strftime('%Y-%m-%dT%H:%M:%S.%fZ')}])


def _describe_failure(response):
    """Status code and body text of a failed response, extracting the error message when present"""
    if response is None:
        return None, None
    body = response.text or ""
    try:
        error = response.json().get('error') or {}
        if error.get('message'):
            code = error.get('code')
            body = f"{code}: {error['message']}" if code else error['message']
    except (ValueError, AttributeError):
        pass
    return response.status_code, body[:MAX_LOGGED_BODY]


class LogsIngestionClient:
    """Send collected records to a data collection rule stream"""

    def __init__(self, config, token_provider):
        self.config = config
        self.token_provider = token_provider
        self.logger = logging.getLogger(__name__)

    def build_ingestion_url(self):
        endpoint = self.config.dce_endpoint.rstrip('/')
        return (f"{endpoint}/dataCollectionRules/{self.config.dcr_immutable_id}"
                f"/streams/{self.config.stream_name}?api-version={INGESTION_API_VERSION}")

    def _post(self, payload):
        """POST a serialized payload, returns (delivered, response)"""
        try:
            token = self.token_provider.get_token(MONITOR_SCOPE)
        except AuthenticationError as e:
            self.logger.error(f"Could not acquire logs ingestion token: {e}")
            return False, None
        headers = {
            'Authorization': f"Bearer {token}",
            'Content-Type': 'application/json',
        }
        try:
            response = http_with_backoff('POST', self.build_ingestion_url(), headers=headers,
                                         data=payload.encode('utf-8'),
                                         timeout=self.config.request_timeout,
                                         max_retries=self.config.max_retries)
        except requests.RequestException as e:
            self.logger.error(f"Logs ingestion request failed: {e}")
            return False, None
        return 200 <= response.status_code < 300, response

    def send(self, records, dry_run=False):
        records = list(records)
        result = IngestionResult(success=False, record_count=len(records))
        if not records:
            self.logger.warning("No records collected, nothing to send")
            result.success = True
            return result

        payload = serialize_records(records)
        try:
            result.backup_path = write_payload_backup(payload, self.config.backup_dir)
        except OSError as e:
            self.logger.warning(f"Could not write payload backup: {e}")

        if dry_run:
            self.logger.info(f"Dry run: {len(records)} records not sent")
            result.success = True
            return result

        self.logger.info(f"Sending {len(records)} records ({len(payload)} bytes) to stream "
                         f"{self.config.stream_name}")
        delivered, response = self._post(payload)
        if delivered:
            result.success = True
            result.status_code = response.status_code
            self.logger.info(f"Logs ingestion accepted {len(records)} records (HTTP {response.status_code})")
            return result

        result.status_code, result.response_body = _describe_failure(response)
        self.logger.error(f"Logs ingestion rejected payload: HTTP {result.status_code} {result.response_body or ''}")

        # A one-field record tells endpoint/auth problems apart from payload shape problems
        result.fallback_attempted = True
        fallback_delivered, fallback_response = self._post(diagnostic_payload())
        result.fallback_succeeded = fallback_delivered
        if fallback_delivered:
            self.logger.error("Diagnostic record was accepted: endpoint and auth work, the payload shape was rejected")
        else:
            status, body = _describe_failure(fallback_response)
            self.logger.error(f"Diagnostic record was also rejected: HTTP {status} {body or ''}")
        return result
