# exception taxonomy for the poll pipeline.

# every error here is contained at the granularity noted on the class:
# nothing in this module is allowed to abort a whole poll cycle.


class RepoWatchError(Exception):
    """Base class for every error raised by repo_watch."""


class FetchError(RepoWatchError):
    """
    A feed or detail fetch failed or timed out.

    Contained per target: the target is skipped this cycle and its cursor
    is left untouched.
    """

    def __init__(self, url: str, reason: str, status: int | None = None) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason
        self.status = status


class StoreError(RepoWatchError):
    """Cursor read or write failed. A failed write is never an advance."""


class ExtractionFault(RepoWatchError):
    """A single feed entry could not be turned into a record."""


class RenderFailure(RepoWatchError):
    """The renderer could not produce an artifact; text fallback is used."""


class DeliveryFailure(RepoWatchError):
    """Delivery to one destination failed. Contained per destination."""

    def __init__(self, destination: str, reason: str) -> None:
        super().__init__(f"{destination}: {reason}")
        self.destination = destination
        self.reason = reason
