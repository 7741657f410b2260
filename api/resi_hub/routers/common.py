# resi_hub/routers/common.py
"""
Outcome -> HTTP status mapping shared by the routers.
"""
from __future__ import annotations
from typing import NoReturn

from fastapi import HTTPException, Path

from resi_hub.errors import Outcome, ResiError, ValidationError
from resi_hub.services.stages import ScanResult, check_store

HTTP_STATUS = {
    Outcome.success: 200,
    Outcome.invalid: 422,
    Outcome.duplicate: 409,
    Outcome.not_found: 404,
    Outcome.already_verified: 409,
    Outcome.ledger_committed: 409,
    Outcome.insufficient_stock: 409,
    Outcome.not_ready: 409,
}


def raise_http(e: ResiError) -> NoReturn:
    raise HTTPException(
        status_code=HTTP_STATUS[e.outcome],
        detail={"outcome": e.outcome.value, "message": e.message},
    )


def checked(result: ScanResult) -> ScanResult:
    """Pass a successful result through; turn a failure into its HTTP error."""
    if not result.ok:
        raise HTTPException(status_code=HTTP_STATUS[result.outcome], detail=result.model_dump(mode="json"))
    return result


def store_path(store: str = Path(..., description="Store partition, e.g. mjm")) -> str:
    try:
        return check_store(store)
    except ValidationError as e:
        raise HTTPException(status_code=404, detail={"outcome": Outcome.not_found.value, "message": e.message})
