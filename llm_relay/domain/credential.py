"""
Credential Domain Model
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Credential:
    """Bearer token, optionally with the endpoint it is valid for."""
    token: str
    endpoint: Optional[str] = None
    expires_at: Optional[int] = None
