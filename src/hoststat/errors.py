"""Exceptions raised by hoststat samplers."""


class SamplerError(Exception):
    """Base class for sampling failures.

    A SamplerError only ever fails the current sampling call; the next cycle
    may succeed.
    """


class CounterUnavailable(SamplerError):
    """A kernel counter query failed."""

    def __init__(self, query: str, message: str = "") -> None:
        self.query = query
        self.message = message
        detail = f": {message}" if message else ""
        super().__init__(f"{query} failed{detail}")


class TransientRaceExceeded(SamplerError):
    """The host configuration kept changing under a query."""

    def __init__(self, attempts: int, what: str = "swap device table") -> None:
        self.attempts = attempts
        self.what = what
        super().__init__(f"{what} changed on each of {attempts} attempts")
