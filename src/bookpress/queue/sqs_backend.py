"""Amazon SQS implementation of QueueClient.

Two physical queues realize the two priorities: a standard queue and a
high-priority FIFO queue that deduplicates by job id. Which one a worker
consumes from is decided by its role (``high_priority_processor``).

When a queue URL does not point at amazonaws.com (ElasticMQ, LocalStack)
its scheme and host are used as the client's endpoint.
"""

from __future__ import annotations

import json
import logging
from typing import List, Optional
from urllib.parse import urlparse

import boto3
from botocore.exceptions import ClientError
from pydantic import ValidationError

from .backends import QueueClient
from .models import JobQueueBody, QueueMessage
from ..errors import QueueDepthUnavailable
from ..models import QueueConfig

logger = logging.getLogger(__name__)

# Errors that mean "this handle no longer refers to a deletable message".
_STALE_RECEIPT_CODES = {"ReceiptHandleIsInvalid", "AWS.SimpleQueueService.NonExistentQueue"}


def endpoint_from_queue_url(queue_url: Optional[str]) -> Optional[str]:
    """Custom endpoint for non-AWS queue URLs, None for real SQS."""
    if not queue_url:
        return None
    parsed = urlparse(queue_url)
    if not parsed.hostname or parsed.hostname.endswith("amazonaws.com"):
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


class SQSQueueClient(QueueClient):
    """SQS-backed job queue."""

    def __init__(self, config: QueueConfig, client=None):
        """
        Args:
            config: Queue URLs, region and consumption settings
            client: Pre-built boto3 SQS client (tests pass a stubbed one)
        """
        if not config.queue_url:
            raise ValueError("queue_url is required for the SQS backend")
        if config.high_priority_processor and not config.high_priority_queue_url:
            raise ValueError("high_priority_queue_url is required for a high-priority processor")

        self.config = config
        self.client = client or boto3.client(
            "sqs",
            region_name=config.region,
            endpoint_url=endpoint_from_queue_url(self.receive_queue_url),
        )

    @property
    def receive_queue_url(self) -> str:
        if self.config.high_priority_processor:
            return self.config.high_priority_queue_url
        return self.config.queue_url

    def _destination(self, is_high_priority: bool) -> str:
        if is_high_priority:
            if not self.config.high_priority_queue_url:
                raise ValueError("high_priority_queue_url is not configured")
            return self.config.high_priority_queue_url
        return self.config.queue_url

    def enqueue(self, job_id: str, is_high_priority: bool = False) -> None:
        queue_url = self._destination(is_high_priority)
        params = {
            "QueueUrl": queue_url,
            "MessageBody": JobQueueBody(job_id=job_id, is_high_priority=is_high_priority).to_json(),
        }
        if is_high_priority:
            params["MessageDeduplicationId"] = job_id
            if queue_url.endswith(".fifo"):
                params["MessageGroupId"] = job_id

        self.client.send_message(**params)
        logger.info("Enqueued job %s (high priority: %s)", job_id, is_high_priority)

    def receive(self) -> List[QueueMessage]:
        response = self.client.receive_message(
            QueueUrl=self.receive_queue_url,
            MaxNumberOfMessages=self.config.max_messages,
            WaitTimeSeconds=self.config.wait_time_s,
        )

        messages = []
        for raw in response.get("Messages", []):
            receipt = raw.get("ReceiptHandle")
            try:
                body = JobQueueBody.model_validate(json.loads(raw.get("Body") or ""))
            except (ValueError, ValidationError) as e:
                logger.warning("Dropping malformed message %s: %s", raw.get("MessageId"), e)
                continue
            if not receipt:
                logger.warning("Dropping message %s without a receipt handle", raw.get("MessageId"))
                continue

            if self.config.interruptible and body.is_high_priority:
                logger.debug("Interruptible worker skipping priority job %s", body.job_id)
                continue

            messages.append(QueueMessage(
                job_id=body.job_id,
                is_high_priority=body.is_high_priority,
                receipt_token=receipt,
            ))
        return messages

    def ack(self, receipt_token: str) -> None:
        try:
            self.client.delete_message(QueueUrl=self.receive_queue_url, ReceiptHandle=receipt_token)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _STALE_RECEIPT_CODES:
                logger.debug("Ack with stale receipt handle ignored: %s", e)
                return
            raise

    def depth(self) -> int:
        response = self.client.get_queue_attributes(
            QueueUrl=self.receive_queue_url,
            AttributeNames=["ApproximateNumberOfMessages"],
        )
        raw = (response.get("Attributes") or {}).get("ApproximateNumberOfMessages")
        if raw is None:
            raise QueueDepthUnavailable(f"No ApproximateNumberOfMessages for {self.receive_queue_url}")
        return int(raw)
