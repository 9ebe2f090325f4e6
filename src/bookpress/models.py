"""Pydantic models for worker configuration."""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class QueueConfig(BaseModel):
    """Job queue connection and consumption settings."""

    backend: Literal["sqs", "sqlite"] = Field(
        default="sqlite", description="Queue implementation (sqs for deployed fleets, sqlite for local runs)"
    )
    queue_url: Optional[str] = Field(default=None, description="Standard-priority SQS queue URL")
    high_priority_queue_url: Optional[str] = Field(
        default=None, description="High-priority SQS queue URL (FIFO, deduplicated by job id)"
    )
    region: str = Field(default="us-east-1", description="AWS region for the SQS client")
    sqlite_path: str = Field(default=".tmp/queue.db", description="Database file for the sqlite backend")
    high_priority_processor: bool = Field(
        default=False, description="Consume from the high-priority queue instead of the standard one"
    )
    interruptible: bool = Field(
        default=False, description="Worker may be reclaimed at any time; skip priority-flagged messages"
    )
    max_messages: int = Field(default=2, ge=1, le=10, description="Maximum messages per receive call")
    wait_time_s: int = Field(default=20, ge=0, le=20, description="Long-poll wait per receive call")
    visibility_timeout_s: int = Field(
        default=900, gt=0, description="Seconds a received message stays hidden before redelivery"
    )
    dedup_window_s: int = Field(
        default=300, ge=0, description="Window in which priority enqueues of the same job id collapse"
    )


class RateLimitConfig(BaseModel):
    """Token bucket guarding the upstream content API."""

    points: int = Field(default=800, gt=0, description="Bucket capacity")
    duration_s: float = Field(default=60.0, gt=0.0, description="Seconds to refill an empty bucket")
    points_per_fetch: int = Field(default=2, gt=0, description="Points consumed per remote page fetch")


class RetryConfig(BaseModel):
    """Per-task retry and circuit breaker policy."""

    max_attempts: int = Field(default=3, ge=1, description="Attempts per task before it counts as failed")
    initial_delay_s: float = Field(default=1.0, ge=0.0, description="Backoff before the second attempt")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Growth factor between attempts")
    max_delay_s: float = Field(default=10.0, ge=0.0, description="Upper bound on a single backoff")
    failure_threshold: int = Field(
        default=3, ge=1, description="Consecutive failed tasks that trip the circuit breaker"
    )

    @model_validator(mode="after")
    def cap_not_below_base(self) -> "RetryConfig":
        """Validate that the delay cap is not smaller than the first delay."""
        if self.max_delay_s < self.initial_delay_s:
            raise ValueError(
                f"max_delay_s ({self.max_delay_s}) must be >= initial_delay_s ({self.initial_delay_s})"
            )
        return self


class RenderConfig(BaseModel):
    """Rendering engine (headless browser) settings."""

    headless: bool = Field(default=True, description="Run the browser without a display")
    restart_threshold: int = Field(
        default=50, gt=0, description="Tasks processed before the browser is recycled"
    )
    render_timeout_s: float = Field(default=120.0, gt=0.0, description="Ceiling for one render attempt")
    page_load_timeout_s: float = Field(default=120.0, gt=0.0, description="Navigation timeout")
    settle_delay_s: float = Field(
        default=1.0, ge=0.0, description="Pause after DOM pre-processing before printing"
    )
    viewport_width: int = Field(default=975, gt=0)
    viewport_height: int = Field(default=1000, gt=0)
    main_color: str = Field(default="#127BC4", description="Footer and directory header color")
    request_denylist: List[str] = Field(
        default_factory=list, description="URL substrings whose sub-resource requests are aborted"
    )


class ConversionConfig(BaseModel):
    """Checkpointed book conversion settings."""

    work_root: str = Field(default=".tmp", description="Root for checkpoints, scratch files and outputs")
    max_job_duration_s: float = Field(
        default=4 * 60 * 60, gt=0.0, description="Wall-clock ceiling for a single conversion"
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)


class StorageConfig(BaseModel):
    """Where finished artifacts are published."""

    use_local_storage: bool = Field(default=True, description="Keep artifacts under work_root only")
    bucket: Optional[str] = Field(default=None, description="S3 bucket for published artifacts")
    region: str = Field(default="us-east-1", description="AWS region for the S3 client")

    @model_validator(mode="after")
    def bucket_required_for_s3(self) -> "StorageConfig":
        """Validate that remote publishing has somewhere to go."""
        if not self.use_local_storage and not self.bucket:
            raise ValueError("bucket is required when use_local_storage is false")
        return self


class JobStoreConfig(BaseModel):
    """Job record persistence."""

    sqlite_path: str = Field(default=".tmp/jobs.db", description="Database file for job records")


class MetricsConfig(BaseModel):
    """Backlog-per-instance autoscaling metric."""

    cluster_name: str = Field(default="bookpress", description="ECS cluster running the workers")
    service_name: str = Field(default="bookpress-processor", description="ECS service of the workers")
    metric_name: str = Field(default="BacklogPerInstance")
    namespace: str = Field(default="Bookpress")
    region: str = Field(default="us-east-1", description="AWS region for ECS and CloudWatch")


class WorkerConfig(BaseModel):
    """Complete worker configuration with validation."""

    environment: Literal["production", "development", "test"] = Field(
        default="development", description="Deployment environment; acks are skipped outside production"
    )
    log_level: str = Field(default="INFO")
    queue: QueueConfig = Field(default_factory=QueueConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    conversion: ConversionConfig = Field(default_factory=ConversionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    job_store: JobStoreConfig = Field(default_factory=JobStoreConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_dict(cls, data: dict) -> "WorkerConfig":
        """Create config from nested dict (YAML)."""
        return cls(**data)

    def merge_overrides(self, overrides: dict) -> "WorkerConfig":
        """Apply dotted-path overrides (``"queue.wait_time_s": 0``) and return a new instance."""
        config_dict = self.model_dump()

        for dotted, value in overrides.items():
            if value is None:
                continue
            node = config_dict
            *parents, leaf = dotted.split(".")
            for key in parents:
                node = node.setdefault(key, {})
            node[leaf] = value

        return WorkerConfig.from_dict(config_dict)
