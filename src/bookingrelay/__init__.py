"""bookingrelay - relay terminal booking records from a live store to an HTTP sink."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("bookingrelay")
except PackageNotFoundError:
    __version__ = "0+local"
from bookingrelay.config import RelayConfig
from bookingrelay.dedup import DedupCache
from bookingrelay.delivery import DeliveryWorker
from bookingrelay.eligibility import decide
from bookingrelay.exceptions import (
    RelayConfigError,
    RelayConnectivityError,
    RelayError,
    RelaySourceError,
    RelayTransportError,
)
from bookingrelay.models import (
    Booking,
    BookingPayload,
    ConnectionState,
    Decision,
    DecisionReason,
    DeliveryAccepted,
    DeliveryFailure,
    DeliveryResult,
    FailureKind,
    RelayStats,
)
from bookingrelay.relay import RelayOrchestrator
from bookingrelay.service import RelayService
from bookingrelay.source import FirebaseSource, RecordSource, SourceMutator
from bookingrelay.supervisor import ConnectionSupervisor

__all__ = [
    "__version__",
    "Booking",
    "BookingPayload",
    "ConnectionState",
    "ConnectionSupervisor",
    "DedupCache",
    "Decision",
    "DecisionReason",
    "DeliveryAccepted",
    "DeliveryFailure",
    "DeliveryResult",
    "DeliveryWorker",
    "FailureKind",
    "FirebaseSource",
    "RecordSource",
    "RelayConfig",
    "RelayConfigError",
    "RelayConnectivityError",
    "RelayError",
    "RelayOrchestrator",
    "RelayService",
    "RelaySourceError",
    "RelayStats",
    "RelayTransportError",
    "SourceMutator",
    "decide",
]
