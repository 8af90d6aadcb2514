"""Fragment extraction from documentation text."""

from .directives import DIRECTIVE_TOKENS, FenceInfo, parse_fence_info
from .fences import FragmentExtractor, extract_fragments, sanitize_name, split_hidden_line

__all__ = [
    "DIRECTIVE_TOKENS",
    "FenceInfo",
    "FragmentExtractor",
    "extract_fragments",
    "parse_fence_info",
    "sanitize_name",
    "split_hidden_line",
]
