"""Errors raised when a gated feature cannot be used."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


@dataclass(eq=False)
class FeatureGateError(Exception):
    """A non-allowing gate decision, shaped for API responses."""

    code: str
    message: str
    feature_id: str
    status_code: int = status.HTTP_403_FORBIDDEN
    remaining: Optional[int] = None
    retry_after: Optional[int] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.retry_after is not None

    @property
    def payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.message, "feature": self.feature_id}
        if self.remaining is not None:
            body["remaining"] = self.remaining
        if self.retryable:
            body["retryable"] = True
        return body

    def to_http_exception(self) -> HTTPException:
        headers = {"Retry-After": str(self.retry_after)} if self.retry_after is not None else None
        return HTTPException(status_code=self.status_code, detail=self.payload, headers=headers)
