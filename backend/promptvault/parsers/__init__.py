"""Platform export parsers: raw file content in, NormalizedPrompt records out."""

from promptvault.parsers.models import NormalizedPrompt
from promptvault.parsers.registry import PARSERS

__all__ = ["NormalizedPrompt", "PARSERS"]
