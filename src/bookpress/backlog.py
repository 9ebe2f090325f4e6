"""Backlog-per-instance metric for queue-driven autoscaling.

Invoked on a schedule (Lambda, cron, or ``python -c``): reads the queue
depth and the number of running worker tasks, then publishes
``depth / workers`` as a single CloudWatch data point. A target-tracking
scaling policy on that metric sizes the fleet.

If either input cannot be read nothing is published and a 400 result is
returned.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

import boto3

from .config import resolve_config
from .errors import WorkerCountUnavailable
from .models import MetricsConfig, WorkerConfig
from .queue import build_queue_client
from .queue.backends import QueueClient

logger = logging.getLogger(__name__)


class EcsWorkerCounter:
    """Counts running tasks of the worker service."""

    def __init__(self, cluster: str, service: str, client=None, region: Optional[str] = None):
        self.cluster = cluster
        self.service = service
        self.client = client or boto3.client("ecs", region_name=region)

    def count(self) -> int:
        paginator = self.client.get_paginator("list_tasks")
        arns = []
        for page in paginator.paginate(
            cluster=self.cluster, serviceName=self.service, desiredStatus="RUNNING"
        ):
            if "taskArns" not in page:
                raise WorkerCountUnavailable(
                    f"No task list returned for {self.cluster}/{self.service}"
                )
            arns.extend(page["taskArns"])
        return len(arns)


class CloudWatchPublisher:
    def __init__(self, config: MetricsConfig, client=None):
        self.config = config
        self.client = client or boto3.client("cloudwatch", region_name=config.region)

    def publish(self, value: float) -> None:
        self.client.put_metric_data(
            Namespace=self.config.namespace,
            MetricData=[{
                "MetricName": self.config.metric_name,
                "Dimensions": [
                    {"Name": "ClusterName", "Value": self.config.cluster_name},
                    {"Name": "ServiceName", "Value": self.config.service_name},
                ],
                "Timestamp": datetime.now(timezone.utc),
                "Unit": "Count",
                "StorageResolution": 60,
                "Value": value,
            }],
        )


def compute_backlog(depth: int, workers: int) -> float:
    """Messages per running worker; with no workers the whole backlog counts."""
    if workers <= 0:
        return float(depth)
    return depth / workers


class BacklogSignal:
    def __init__(self, queue: QueueClient, workers: EcsWorkerCounter, publisher: CloudWatchPublisher):
        self.queue = queue
        self.workers = workers
        self.publisher = publisher

    def run_metric_update(self) -> dict:
        """Compute and publish one data point.

        Returns:
            ``{"statusCode": 200, "value": ...}`` on success, otherwise
            ``{"statusCode": 400, "body": ...}`` with the error serialized
        """
        try:
            depth = self.queue.depth()
            workers = self.workers.count()
            value = compute_backlog(depth, workers)
            self.publisher.publish(value)
        except Exception as e:
            logger.error("Backlog metric update failed: %s", e)
            return {
                "statusCode": 400,
                "body": json.dumps({"error": type(e).__name__, "message": str(e)}),
            }

        logger.info("Published backlog per instance %.3f (depth=%d, workers=%d)", value, depth, workers)
        return {"statusCode": 200, "value": value}


def build_backlog_signal(config: WorkerConfig) -> BacklogSignal:
    metrics = config.metrics
    return BacklogSignal(
        queue=build_queue_client(config.queue),
        workers=EcsWorkerCounter(metrics.cluster_name, metrics.service_name, region=metrics.region),
        publisher=CloudWatchPublisher(metrics),
    )


def handler(event=None, context=None) -> dict:
    """Lambda entry point."""
    try:
        signal = build_backlog_signal(resolve_config())
    except Exception as e:
        logger.error("Backlog metric misconfigured: %s", e)
        return {"statusCode": 400, "body": json.dumps({"error": type(e).__name__, "message": str(e)})}
    return signal.run_metric_update()
