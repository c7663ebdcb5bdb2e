"""Domain errors and their HTTP rendering.

Services raise LedgerError subclasses; the handlers registered in main.py
turn them into ``{"error": message}`` bodies with the mapped status code.
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("meterledger.errors")


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthenticated(LedgerError):
    """No device credential supplied."""
    status_code = 400


class AdminKeyMissing(LedgerError):
    status_code = 401


class AdminAccessDenied(LedgerError):
    status_code = 403


class NotFound(LedgerError):
    status_code = 404


class InvalidState(LedgerError):
    status_code = 400


class ValidationError(LedgerError):
    status_code = 400


async def _ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    logger.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "internal error"})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, _ledger_error_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)
