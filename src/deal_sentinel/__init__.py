"""deal-sentinel: storefront price monitoring and alerting engine."""

__version__ = "0.1.0"
