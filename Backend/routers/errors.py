# Backend/routers/errors.py
"""Mapping of workflow errors onto HTTP responses, shared by routes and dependencies."""

from fastapi import HTTPException

from services.exceptions import (
    AIGatewayError, ApplicationNotFoundError, CreditWorkflowError, HighRiskConfirmationRequired,
    IdentityMismatchError, InvalidTransitionError, MissingInputError, PinError, RemoteStoreError,
    ShallowRecordError, StaleDataError, WorkflowBusyError,
)


def to_http_error(e: CreditWorkflowError) -> HTTPException:
    if isinstance(e, MissingInputError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ApplicationNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PinError):
        return HTTPException(status_code=401, detail=str(e))
    if isinstance(e, WorkflowBusyError):
        return HTTPException(status_code=423, detail=str(e))
    if isinstance(e, IdentityMismatchError):
        return HTTPException(status_code=409, detail={
            "message": str(e),
            "mismatches": [
                {"kind": kind, "fileName": name, "reason": reason} for kind, name, reason in e.mismatches
            ],
        })
    if isinstance(e, HighRiskConfirmationRequired):
        return HTTPException(status_code=409, detail={
            "message": str(e),
            "approvedLimit": e.approved_limit,
            "liberalLimit": e.liberal_limit,
        })
    if isinstance(e, (InvalidTransitionError, ShallowRecordError, StaleDataError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (AIGatewayError, RemoteStoreError)):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
