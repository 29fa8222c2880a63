"""Exceptions raised by the meta-analysis engine."""


class MetaAnalysisError(Exception):
    """Base error for the meta-analysis engine."""


class InvalidDataError(MetaAnalysisError):
    """Input data violates one or more constraints.

    Every violation found is collected in ``errors`` so callers can fix all
    of them in one pass.
    """

    def __init__(self, errors: list[str], context: str = "Invalid data") -> None:
        self.errors = list(errors)
        super().__init__(f"{context}: {'; '.join(self.errors)}")


class InsufficientDataError(MetaAnalysisError):
    """Not enough studies or comparisons to run an analysis."""
