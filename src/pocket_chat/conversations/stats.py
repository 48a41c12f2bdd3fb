"""Token statistics for a completed generation."""

import time

from pocket_chat.conversations.models import TokenStats


def calculate_token_stats(
    token_count: int,
    start_time: float,
    first_token_time: float | None,
    end_time: float,
) -> TokenStats:
    """Calculate statistics for a completed streaming session.

    Times are ``time.perf_counter()`` readings in seconds.
    """
    total = end_time - start_time
    ttft = first_token_time - start_time if first_token_time is not None else None
    tps = token_count / total if token_count > 0 and total > 0 else None
    return TokenStats(
        token_count=token_count,
        time_to_first_token=ttft,
        tokens_per_second=tps,
    )


class TokenTimer:
    """Records token arrivals during one generation."""

    def __init__(self) -> None:
        self.start_time = time.perf_counter()
        self.first_token_time: float | None = None
        self.token_count = 0

    def mark_token(self) -> None:
        if self.first_token_time is None:
            self.first_token_time = time.perf_counter()
        self.token_count += 1

    def finish(self) -> TokenStats:
        return calculate_token_stats(
            self.token_count,
            self.start_time,
            self.first_token_time,
            time.perf_counter(),
        )
