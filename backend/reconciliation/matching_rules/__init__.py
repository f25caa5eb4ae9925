"""
Matching Rules Module
"""

from .highlight_rules import FieldMatchHighlighter, MatchSignals, field_match_highlighter

__all__ = ["FieldMatchHighlighter", "MatchSignals", "field_match_highlighter"]
