from __future__ import annotations


class FakeClock:
    """
    Manually advanced epoch clock; pass as `clock=` to the stores.
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += float(seconds)
        return self.now
