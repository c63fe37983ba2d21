"""Thin MLflow tracing helpers.

Spans come straight from MLflow; the metric/tag helpers swallow
tracking-server failures so diagnostics never break a request.

    from civictrack.observability.tracing import start_span, trace

    @trace(name="call_llm", span_type="CHAT_MODEL")
    async def call(): ...

    with start_span("query_issues", span_type="RETRIEVER") as span:
        span.set_inputs({...})
"""

import logging
from contextlib import contextmanager

import mlflow

logger = logging.getLogger(__name__)


def trace(name: str | None = None, **kwargs):
    """Decorator: wraps a sync or async function in an MLflow trace."""
    return mlflow.trace(name=name, **kwargs) if name else mlflow.trace(**kwargs)


@contextmanager
def start_span(name: str = "span", **kwargs):
    with mlflow.start_span(name=name, **kwargs) as span:
        yield span


def log_metrics(metrics: dict, step: int | None = None) -> None:
    """Log metrics to the active MLflow run; no run, no metrics."""
    if mlflow.active_run() is None:
        return
    try:
        mlflow.log_metrics(metrics, step=step)
    except Exception as e:
        logger.debug("MLflow log_metrics failed: %s", e)


def configure_tracking(tracking_uri: str, experiment_name: str) -> None:
    """Point MLflow at the tracking store and enable async logging."""
    mlflow.set_tracking_uri(tracking_uri)
    mlflow.set_experiment(experiment_name)
    mlflow.config.enable_async_logging()
