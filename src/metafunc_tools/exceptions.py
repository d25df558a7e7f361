# metafunc_tools/exceptions.py
"""
Exception hierarchy for metafunc_tools.

Structural problems (alignment, degenerate fits) abort a run. Gene- or
sample-level problems are raised only when the caller disabled exclusion;
otherwise the offending rows/columns are dropped and counted.
"""


class MetaFuncError(Exception):
    """Base class for all metafunc_tools errors."""


class DataAlignmentError(MetaFuncError):
    """Sample or gene identifiers do not line up across tables."""


class OrderMismatchError(DataAlignmentError):
    """Ordered sample list cannot be reconciled 1:1 with the metadata."""


class MissingReferenceDataError(MetaFuncError):
    """A gene length or genome-equivalent value needed for normalization is missing."""


class MissingLengthError(MissingReferenceDataError):
    """One or more genes have no usable length estimate."""

    def __init__(self, genes):
        self.genes = list(genes)
        preview = ", ".join(map(str, self.genes[:5]))
        more = f" (+{len(self.genes) - 5} more)" if len(self.genes) > 5 else ""
        super().__init__(f"No length estimate for {len(self.genes)} gene(s): {preview}{more}")


class InvalidSampleError(MissingReferenceDataError):
    """One or more samples have a zero, negative or undefined genome-equivalent count."""

    def __init__(self, samples):
        self.samples = list(samples)
        super().__init__(
            f"Invalid genome equivalents for sample(s): {', '.join(map(str, self.samples))}"
        )


class DegenerateFitError(MetaFuncError):
    """Not enough variance signal to fit a trend or a prior."""


class InsufficientDataError(MetaFuncError):
    """Too few tests to estimate the proportion of true nulls."""


class RankDeficiencyError(MetaFuncError):
    """Design matrix is singular, for one gene or for the whole experiment."""
