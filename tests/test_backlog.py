"""Tests for the backlog-per-instance autoscaling metric."""

import json
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.stub import ANY, Stubber

from bookpress import backlog
from bookpress.backlog import BacklogSignal, CloudWatchPublisher, EcsWorkerCounter, compute_backlog
from bookpress.errors import QueueDepthUnavailable, WorkerCountUnavailable
from bookpress.models import MetricsConfig


def aws_client(service):
    return boto3.client(
        service, region_name="us-east-1", aws_access_key_id="testing", aws_secret_access_key="testing"
    )


class TestComputeBacklog:
    @pytest.mark.parametrize("depth, workers, expected", [
        (10, 2, 5.0),
        (0, 4, 0.0),
        (3, 4, 0.75),
        (7, 0, 7.0),
    ])
    def test_compute(self, depth, workers, expected):
        assert compute_backlog(depth, workers) == expected


class TestEcsWorkerCounter:
    def test_counts_running_tasks(self):
        client = aws_client("ecs")
        with Stubber(client) as stub:
            stub.add_response(
                "list_tasks",
                {"taskArns": ["arn:task/1", "arn:task/2", "arn:task/3"]},
                {"cluster": "bookpress", "serviceName": "bookpress-processor", "desiredStatus": "RUNNING"},
            )
            assert EcsWorkerCounter("bookpress", "bookpress-processor", client=client).count() == 3

    def test_missing_task_list(self):
        client = aws_client("ecs")
        with Stubber(client) as stub:
            stub.add_response("list_tasks", {})
            with pytest.raises(WorkerCountUnavailable):
                EcsWorkerCounter("bookpress", "bookpress-processor", client=client).count()


class TestCloudWatchPublisher:
    def test_publishes_single_datapoint(self):
        client = aws_client("cloudwatch")
        config = MetricsConfig(cluster_name="c1", service_name="s1", metric_name="Backlog", namespace="NS")
        with Stubber(client) as stub:
            stub.add_response("put_metric_data", {}, {"Namespace": "NS", "MetricData": ANY})
            CloudWatchPublisher(config, client=client).publish(2.5)

    def test_datapoint_shape(self):
        client = MagicMock()
        config = MetricsConfig(cluster_name="c1", service_name="s1")

        CloudWatchPublisher(config, client=client).publish(4.0)

        datum = client.put_metric_data.call_args.kwargs["MetricData"][0]
        assert datum["MetricName"] == "BacklogPerInstance"
        assert datum["Value"] == 4.0
        assert datum["Unit"] == "Count"
        assert datum["Dimensions"] == [
            {"Name": "ClusterName", "Value": "c1"},
            {"Name": "ServiceName", "Value": "s1"},
        ]


class TestBacklogSignal:
    def make_signal(self, depth=10, workers=4):
        queue = MagicMock()
        counter = MagicMock()
        publisher = MagicMock()
        if isinstance(depth, Exception):
            queue.depth.side_effect = depth
        else:
            queue.depth.return_value = depth
        if isinstance(workers, Exception):
            counter.count.side_effect = workers
        else:
            counter.count.return_value = workers
        return BacklogSignal(queue, counter, publisher), publisher

    def test_publishes_ratio(self):
        signal, publisher = self.make_signal(10, 4)

        result = signal.run_metric_update()

        assert result == {"statusCode": 200, "value": 2.5}
        publisher.publish.assert_called_once_with(2.5)

    def test_zero_workers_publishes_depth(self):
        signal, publisher = self.make_signal(6, 0)

        assert signal.run_metric_update()["value"] == 6.0

    @pytest.mark.parametrize("depth, workers, error", [
        (QueueDepthUnavailable("no attribute"), 2, "QueueDepthUnavailable"),
        (5, WorkerCountUnavailable("no task list"), "WorkerCountUnavailable"),
    ])
    def test_unreadable_inputs_publish_nothing(self, depth, workers, error):
        signal, publisher = self.make_signal(depth, workers)

        result = signal.run_metric_update()

        assert result["statusCode"] == 400
        assert json.loads(result["body"])["error"] == error
        publisher.publish.assert_not_called()

    def test_publish_failure_reported(self):
        signal, publisher = self.make_signal(4, 2)
        publisher.publish.side_effect = RuntimeError("throttled")

        result = signal.run_metric_update()

        assert result["statusCode"] == 400
        assert json.loads(result["body"])["message"] == "throttled"


class TestHandler:
    def test_handler_runs_update(self, monkeypatch):
        fake_signal = MagicMock()
        fake_signal.run_metric_update.return_value = {"statusCode": 200, "value": 1.0}
        monkeypatch.setattr(backlog, "build_backlog_signal", lambda config: fake_signal)

        assert backlog.handler({}, None) == {"statusCode": 200, "value": 1.0}

    def test_handler_reports_configuration_errors(self, monkeypatch):
        def broken(config):
            raise ValueError("queue_url is required for the SQS backend")

        monkeypatch.setattr(backlog, "build_backlog_signal", broken)

        result = backlog.handler({}, None)

        assert result["statusCode"] == 400
        assert "queue_url" in json.loads(result["body"])["message"]
