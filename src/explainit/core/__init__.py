"""
Core components of explainit: logging setup and the session registry.
"""
from .session_registry import Session, SessionRegistry, ResumeData

__all__ = [
    "Session",
    "SessionRegistry",
    "ResumeData",
]
