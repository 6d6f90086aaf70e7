"""Cookbook upload gate.

Rebuilds an uploaded cookbook from the Chef storage backend, locates its
authoritative source, compares both and validates dependency freezes before
the upload is allowed through.
"""

from .models import (
    CandidatePackage,
    CookbookFile,
    CookbookVersion,
    DiscrepancyReport,
    SourceReference,
)

__all__ = [
    "CandidatePackage",
    "CookbookFile",
    "CookbookVersion",
    "DiscrepancyReport",
    "SourceReference",
]
