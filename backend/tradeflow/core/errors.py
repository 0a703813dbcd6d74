"""Domain errors raised by the workflow services.

Services raise these instead of ``HTTPException`` so they stay usable from the
verification worker; ``tradeflow.core.observability.workflow_error_handler``
renders them as ``{"detail", "code", ...extra}`` JSON responses.
"""

from __future__ import annotations

from typing import Any, Iterable


class TradeflowError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, detail: str, *, code: str | None = None, **extra: Any) -> None:
        super().__init__(detail)
        self.detail = detail
        if code is not None:
            self.code = code
        self.extra = extra

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.detail, "code": self.code, **self.extra}


class ValidationFailed(TradeflowError):
    status_code = 400
    code = "validation_error"


class NotAuthenticated(TradeflowError):
    status_code = 401
    code = "not_authenticated"


class PermissionDenied(TradeflowError):
    status_code = 403
    code = "permission_denied"

    def __init__(
        self,
        detail: str,
        *,
        required_parties: Iterable[Any] | None = None,
        **extra: Any,
    ) -> None:
        if required_parties is not None:
            extra["required_parties"] = [getattr(p, "value", p) for p in required_parties]
        super().__init__(detail, **extra)


class NotFound(TradeflowError):
    status_code = 404
    code = "not_found"


class Conflict(TradeflowError):
    status_code = 409
    code = "conflict"


class StepAlreadyCompleted(Conflict):
    status_code = 400
    code = "step_already_completed"

    def __init__(self, detail: str = "Step already completed", **extra: Any) -> None:
        super().__init__(detail, **extra)


class WorkflowLocked(Conflict):
    code = "workflow_locked"

    def __init__(self, detail: str = "Workflow locked", **extra: Any) -> None:
        super().__init__(detail, **extra)


class UpstreamFailure(TradeflowError):
    status_code = 500
    code = "upstream_error"
