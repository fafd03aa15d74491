class MiningError(Exception):
    """Base class for failures while mining data out of the game bundle."""


class MatchError(MiningError):
    """Delimiters could not be balanced."""


class NotFoundError(MiningError):
    """No object literal matched the signatures of a category."""

    def __init__(self, category: str, signatures: list[str] | tuple[str, ...] = ()):
        self.category = category
        self.signatures = list(signatures)
        super().__init__(f"{category} object literal not found in bundle")


class InvalidShapeError(MiningError):
    """An evaluated literal was not a plain object."""

    def __init__(self, what: str, got: str):
        self.what = what
        self.got = got
        super().__init__(f"{what} evaluated to {got}, expected an object")


class EvaluationError(MiningError):
    """The sandbox failed to evaluate a fragment (syntax, runtime or timeout)."""


class FetchError(Exception):
    """An upstream resource could not be fetched."""

    def __init__(self, url: str, message: str, status: int | None = None):
        self.url = url
        self.status = status
        super().__init__(f"{message} ({url})")
