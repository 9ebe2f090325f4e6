import pytest

from bookpress.conversion.checkpoint import CheckpointStore
from bookpress.conversion.pipeline import ConversionPipeline
from bookpress.models import ConversionConfig
from bookpress.ratelimit import TokenBucketLimiter
from bookpress.resilience import RetryPolicy

from fakes import FakeEngineFactory, no_sleep


@pytest.fixture
def engine_factory():
    return FakeEngineFactory()


@pytest.fixture
def work_root(tmp_path):
    return tmp_path / "work"


@pytest.fixture
def conversion_config(work_root):
    return ConversionConfig(work_root=str(work_root))


@pytest.fixture
def checkpoints(work_root):
    return CheckpointStore(str(work_root))


@pytest.fixture
def limiter():
    return TokenBucketLimiter(points=10_000, duration_s=60)


@pytest.fixture
def make_pipeline(conversion_config, limiter, engine_factory, checkpoints):
    """Build a pipeline with fakes; keyword arguments override the defaults."""

    def _make(**kwargs) -> ConversionPipeline:
        params = dict(
            config=conversion_config,
            limiter=limiter,
            engine_factory=engine_factory,
            checkpoints=checkpoints,
            retry_policy=RetryPolicy.from_config(conversion_config.retry, sleep=no_sleep),
        )
        params.update(kwargs)
        return ConversionPipeline(**params)

    return _make
