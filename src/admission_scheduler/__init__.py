import logging

from .buckets import BucketSnapshot, ModelBuckets, QuotaBucket, QuotaDimension
from .config import (
    ModelQuotaConfig,
    SchedulerConfig,
    get_default_models,
    load_scheduler_config,
)
from .errors import NoKnownCandidateError, SchedulerError
from .scheduler import AdmissionScheduler, Reservation

lib_logger = logging.getLogger("admission_scheduler")
if not lib_logger.handlers:
    lib_logger.addHandler(logging.NullHandler())

__all__ = [
    "AdmissionScheduler",
    "Reservation",
    "ModelQuotaConfig",
    "SchedulerConfig",
    "get_default_models",
    "load_scheduler_config",
    "QuotaBucket",
    "QuotaDimension",
    "BucketSnapshot",
    "ModelBuckets",
    "SchedulerError",
    "NoKnownCandidateError",
]
