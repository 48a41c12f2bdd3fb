"""Cooperative cancellation for streaming calls."""

from pocket_chat.core.errors import GenerationCancelled


class CancellationToken:
    """Cancellation signal checked by adapters between token deliveries.

    ``user_initiated`` tells the caller whether partial output should be kept
    (explicit stop) or dropped (e.g. a new conversation was started).
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.user_initiated = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, user_initiated: bool = False) -> None:
        self._cancelled = True
        self.user_initiated = user_initiated

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise GenerationCancelled()
