"""Core value types shared by the editor and workspace layers."""

from .ranges import TextRange

__all__ = ["TextRange"]
