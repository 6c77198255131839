"""
Result Variants - Tagged unions returned or broadcast by the coordinator and importer.

Each union is a type alias over frozen dataclasses; consumers match on the
concrete class.
"""

from dataclasses import dataclass
from typing import TypeAlias

from reconciler.models.domain import Subscription

# ============================================================================
# Purchase lifecycle (broadcast on the current-purchase channel)
# ============================================================================


@dataclass(frozen=True)
class PreFlowInProgress:
    pass


@dataclass(frozen=True)
class PreFlowFinished:
    pass


@dataclass(frozen=True)
class InProgress:
    pass


@dataclass(frozen=True)
class Success:
    pass


@dataclass(frozen=True)
class Waiting:
    """Confirmation did not go through; the local subscription waits for reconciliation."""

    pass


@dataclass(frozen=True)
class Recovered:
    """An existing active subscription was restored instead of purchasing again."""

    pass


@dataclass(frozen=True)
class Canceled:
    pass


@dataclass(frozen=True)
class Failure:
    message: str


CurrentPurchase: TypeAlias = (
    PreFlowInProgress
    | PreFlowFinished
    | InProgress
    | Success
    | Waiting
    | Recovered
    | Canceled
    | Failure
)

# ============================================================================
# Token results
# ============================================================================


@dataclass(frozen=True)
class AuthTokenSuccess:
    auth_token: str


@dataclass(frozen=True)
class UnknownError:
    pass


@dataclass(frozen=True)
class TokenExpired:
    """The stored auth token expired and could not be refreshed from the store."""

    auth_token: str


AuthTokenResult: TypeAlias = AuthTokenSuccess | UnknownError | TokenExpired


@dataclass(frozen=True)
class AccessTokenSuccess:
    access_token: str


@dataclass(frozen=True)
class AccessTokenFailure:
    message: str


AccessTokenResult: TypeAlias = AccessTokenSuccess | AccessTokenFailure

# ============================================================================
# Store recovery
# ============================================================================


@dataclass(frozen=True)
class RecoverSuccess:
    subscription: Subscription


@dataclass(frozen=True)
class RecoverFailure:
    message: str


RecoverSubscriptionResult: TypeAlias = RecoverSuccess | RecoverFailure

# ============================================================================
# Credential import progress
# ============================================================================


@dataclass(frozen=True)
class ImportInProgress:
    saved_credential_ids: tuple[int, ...]
    number_skipped: int
    original_import_list_size: int
    job_id: str


@dataclass(frozen=True)
class ImportFinished:
    saved_credential_ids: tuple[int, ...]
    number_skipped: int
    job_id: str


ImportResult: TypeAlias = ImportInProgress | ImportFinished
