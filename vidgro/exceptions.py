"""
Exception Classes - Strongly typed exception hierarchy.

All exceptions carry typed attributes so routes can map them without parsing messages.
"""

from uuid import UUID

from vidgro.models.api import RejectionReason


class VidGroError(Exception):
    """Base exception for all ledger and promotion errors."""

    pass


class InsufficientFundsError(VidGroError):
    """Raised when a debit would overdraw the account."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient funds. Balance: {balance}, Required: {required}")


class AccountNotFoundError(VidGroError):
    """Raised when account doesn't exist."""

    def __init__(self, account_id: UUID) -> None:
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class AccountClosedError(VidGroError):
    """Raised when a closed account is mutated."""

    def __init__(self, account_id: UUID) -> None:
        self.account_id = account_id
        super().__init__(f"Account {account_id} is closed")


class NotOwnerError(VidGroError):
    """Raised when a caller acts on a promotion it does not own."""

    def __init__(self, promotion_id: UUID, account_id: UUID) -> None:
        self.promotion_id = promotion_id
        self.account_id = account_id
        super().__init__(f"Account {account_id} does not own promotion {promotion_id}")


class PromotionCompletedError(VidGroError):
    """Raised when cancelling a promotion that already reached its target."""

    def __init__(self, promotion_id: UUID) -> None:
        self.promotion_id = promotion_id
        super().__init__(f"Promotion {promotion_id} is completed and cannot be cancelled")


class ViewRejectedError(VidGroError):
    """Base for settlement rejections; `reason` is the client-facing code."""

    reason: RejectionReason

    def __init__(self, promotion_id: UUID, message: str) -> None:
        self.promotion_id = promotion_id
        super().__init__(message)


class PromotionNotFoundError(ViewRejectedError):
    """Raised when a promotion doesn't exist (or was cancelled)."""

    reason = RejectionReason.PROMOTION_NOT_FOUND

    def __init__(self, promotion_id: UUID) -> None:
        super().__init__(promotion_id, f"Promotion not found: {promotion_id}")


class SelfViewError(ViewRejectedError):
    """Raised when an owner tries to watch their own promotion."""

    reason = RejectionReason.SELF_VIEW

    def __init__(self, promotion_id: UUID) -> None:
        super().__init__(promotion_id, f"Cannot view own promotion {promotion_id}")


class PromotionNotActiveError(ViewRejectedError):
    """Raised when a promotion is on hold, full, completed or cancelled."""

    reason = RejectionReason.PROMOTION_NOT_ACTIVE

    def __init__(self, promotion_id: UUID, status: str) -> None:
        self.status = status
        super().__init__(promotion_id, f"Promotion {promotion_id} is not active ({status})")


class AlreadyViewedError(ViewRejectedError):
    """Raised when the viewer already has a view record for the promotion."""

    reason = RejectionReason.ALREADY_VIEWED

    def __init__(self, promotion_id: UUID, viewer_id: UUID) -> None:
        self.viewer_id = viewer_id
        super().__init__(promotion_id, f"Account {viewer_id} already viewed {promotion_id}")


class WriteVerificationError(VidGroError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(VidGroError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class AuthenticationError(VidGroError):
    """Raised when authentication fails (invalid token, invalid API key)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class MetadataResolutionError(VidGroError):
    """Raised when the video metadata lookup fails."""

    def __init__(self, target_id: str, message: str) -> None:
        self.target_id = target_id
        self.message = message
        super().__init__(f"Metadata lookup failed for {target_id}: {message}")


class VideoNotFoundError(MetadataResolutionError):
    """Raised when the platform reports no such video."""

    def __init__(self, target_id: str) -> None:
        super().__init__(target_id, "video not found")


class VideoNotEmbeddableError(MetadataResolutionError):
    """Raised when the platform forbids embedding the video."""

    def __init__(self, target_id: str) -> None:
        super().__init__(target_id, "embedding disabled by owner")
