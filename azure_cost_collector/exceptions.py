# Exceptions raised by the cost collection job


class CostCollectorError(Exception):
    """Base class for collection job errors"""


class ConfigurationError(CostCollectorError):
    """Required configuration is missing or invalid"""


class AuthenticationError(CostCollectorError):
    """Azure authentication failed and no subscriptions can be enumerated"""


class DeliveryError(CostCollectorError):
    """The main payload was not accepted by the Logs Ingestion endpoint"""

    def __init__(self, message, result=None):
        super().__init__(message)
        self.result = result
