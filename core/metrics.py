"""
Metrics interface for the negotiation and order workflow.

Services receive a metrics object instead of touching global counters.
"""

import logging

from django.utils.module_loading import import_string

from .conf import marketplace_setting

logger = logging.getLogger(__name__)


class WorkflowMetrics:
    """Base interface. Subclasses record counters and timings."""

    def increment(self, name, value=1, **tags):
        raise NotImplementedError

    def timing(self, name, seconds, **tags):
        raise NotImplementedError


class NullMetrics(WorkflowMetrics):
    """Discards everything."""

    def increment(self, name, value=1, **tags):
        pass

    def timing(self, name, seconds, **tags):
        pass


class LoggingMetrics(WorkflowMetrics):
    """Writes every metric to the 'core.metrics' logger at DEBUG level."""

    def increment(self, name, value=1, **tags):
        logger.debug(f"metric counter {name} +{value} {tags}")

    def timing(self, name, seconds, **tags):
        logger.debug(f"metric timing {name} {seconds:.4f}s {tags}")


def get_metrics_backend():
    """
    Instantiate the backend named by MARKETPLACE['METRICS_BACKEND'].

    Returns:
        WorkflowMetrics: A fresh metrics backend instance
    """
    backend_path = marketplace_setting('METRICS_BACKEND')
    return import_string(backend_path)()
