import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional

import yaml
from dotenv import load_dotenv

from .models import WorkerConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/default.yaml")
LOCAL_CONFIG_PATH = Path("config/local.yaml")

# Environment variable -> dotted config path. Names match the deployed
# task definitions so existing fleets keep working.
ENV_VARS = {
    "BOOKPRESS_ENV": "environment",
    "LOG_LEVEL": "log_level",
    "SQS_QUEUE_URL": "queue.queue_url",
    "SQS_HIGH_PRIORITY_QUEUE_URL": "queue.high_priority_queue_url",
    "AWS_REGION": "queue.region",
    "QUEUE_BACKEND": "queue.backend",
    "IS_HIGH_PRIORITY_PROCESSOR": "queue.high_priority_processor",
    "IS_INTERRUPTIBLE": "queue.interruptible",
    "CXONE_RATE_LIMITER_POINTS": "rate_limit.points",
    "CXONE_RATE_LIMITER_DURATION": "rate_limit.duration_s",
    "TMP_OUT_DIR": "conversion.work_root",
    "USE_LOCAL_STORAGE": "storage.use_local_storage",
    "BUCKET": "storage.bucket",
    "ECS_CLUSTER_NAME": "metrics.cluster_name",
    "ECS_SERVICE_NAME": "metrics.service_name",
    "CLOUDWATCH_METRIC_NAME": "metrics.metric_name",
    "CLOUDWATCH_NAMESPACE": "metrics.namespace",
}

# NODE_ENV values used by the older deployment scripts.
_LEGACY_ENVIRONMENTS = {
    "PRODUCTION": "production",
    "DEVELOPMENT": "development",
    "TEST": "test",
}


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file, returning empty dict if not found."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def merge_dicts(base: Dict, override: Dict) -> Dict:
    """Recursive merge of two dictionaries."""
    result = base.copy()
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = merge_dicts(result[k], v)
        else:
            result[k] = v
    return result


def env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Collect dotted-path overrides from environment variables.

    Values are passed through as strings; pydantic coerces "true"/"800"
    into the declared field types during validation.
    """
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}

    node_env = environ.get("NODE_ENV")
    if node_env:
        overrides["environment"] = _LEGACY_ENVIRONMENTS.get(node_env.upper(), node_env.lower())

    for var, dotted in ENV_VARS.items():
        value = environ.get(var)
        if value not in (None, ""):
            overrides[dotted] = value

    # Remote queue URLs imply the SQS backend unless told otherwise.
    if "queue.queue_url" in overrides and "queue.backend" not in overrides:
        overrides["queue.backend"] = "sqs"
    return overrides


def resolve_config(
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
    dotenv_path: Optional[Path] = None,
) -> WorkerConfig:
    """
    Resolve config: Default YAML < Local YAML < environment < explicit overrides.
    Returns validated Pydantic WorkerConfig model.

    A ``.env`` file is loaded into the process environment first (existing
    variables win) unless an explicit ``environ`` mapping is supplied.
    """
    overrides = overrides or {}

    if environ is None:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    # 1. Load default YAML
    config_data = load_yaml(DEFAULT_CONFIG_PATH)

    # 2. Merge local overrides
    local_data = load_yaml(LOCAL_CONFIG_PATH)
    config_data = merge_dicts(config_data, local_data)

    # 3. Create validated Pydantic model
    config = WorkerConfig.from_dict(config_data)

    # 4. Environment, then explicit overrides
    config = config.merge_overrides(env_overrides(environ))
    config = config.merge_overrides(overrides)

    logger.debug("Resolved config for environment=%s queue=%s", config.environment, config.queue.backend)
    return config
