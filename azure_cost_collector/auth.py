# Azure authentication, token acquisition and subscription discovery

import logging

from azure.identity import AzureCliCredential, DefaultAzureCredential
from azure.mgmt.subscription import SubscriptionClient

from .config import MANAGEMENT_SCOPE
from .exceptions import AuthenticationError

logger = logging.getLogger(__name__)


def get_credential():
    """
    Return a credential that can obtain management tokens.

    DefaultAzureCredential covers managed identity (scheduled runs inside
    Azure), environment service principals and developer logins. Azure CLI
    is tried on its own when the default chain fails.
    """
    errors = []
    for credential_type in (DefaultAzureCredential, AzureCliCredential):
        try:
            credential = credential_type()
            credential.get_token(MANAGEMENT_SCOPE)
            logger.info(f"Using {credential_type.__name__}")
            return credential
        except Exception as e:
            logger.warning(f"{credential_type.__name__} could not get a management token: {e}")
            errors.append(f"{credential_type.__name__}: {e}")
    raise AuthenticationError("Azure authentication failed. " + "; ".join(errors))


class TokenProvider:
    """Bearer tokens for a given audience scope"""

    def __init__(self, credential):
        self.credential = credential

    def get_token(self, scope):
        try:
            return self.credential.get_token(scope).token
        except Exception as e:
            raise AuthenticationError(f"Could not acquire token for {scope}: {e}") from e


def get_all_subscriptions(credential, subscription_ids=None):
    """
    List accessible subscriptions as dicts, optionally restricted to subscription_ids.

    Any failure here is fatal for the run: without subscriptions there is nothing to collect.
    """
    try:
        subscription_client = SubscriptionClient(credential)
        subscriptions = [
            {
                'subscription_id': sub.subscription_id,
                'display_name': sub.display_name,
                'state': str(getattr(sub.state, 'value', sub.state) or 'Unknown'),
                'tenant_id': getattr(sub, 'tenant_id', None),
            }
            for sub in subscription_client.subscriptions.list()
        ]
    except Exception as e:
        logger.error(f"Error listing subscriptions: {e}")
        raise AuthenticationError(f"Could not enumerate subscriptions: {e}") from e

    logger.info(f"Found {len(subscriptions)} accessible subscriptions")
    if subscription_ids:
        wanted = {sub_id.lower() for sub_id in subscription_ids}
        selected = [s for s in subscriptions if s['subscription_id'].lower() in wanted]
        missing = wanted - {s['subscription_id'].lower() for s in selected}
        for sub_id in sorted(missing):
            logger.warning(f"Subscription '{sub_id}' is not accessible and will be skipped")
        subscriptions = selected
        logger.info(f"Restricted to {len(subscriptions)} requested subscriptions")

    if not subscriptions:
        raise AuthenticationError("No accessible subscriptions found")
    return subscriptions
