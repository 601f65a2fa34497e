from __future__ import annotations

import asyncio
import logging
from typing import Callable

from fastapi import Request, Response
from fastapi.routing import APIRoute
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError

from backend.app.core.config import settings
from backend.app.core.errors import PersistenceError

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = {"GET", "HEAD"}
TRANSIENT_ERRORS = (OperationalError, InterfaceError)


class ReadRetryRoute(APIRoute):
    """
    Route v1 : les lectures (GET) sont rejouées sur erreur DB transitoire,
    avec une session neuve à chaque tentative (get_db est résolu à nouveau).

    Les écritures ne sont JAMAIS rejouées : l'erreur remonte en PersistenceError.
    """

    def get_route_handler(self) -> Callable:
        original_route_handler = super().get_route_handler()

        async def route_handler(request: Request) -> Response:
            idempotent = request.method in IDEMPOTENT_METHODS
            attempts = max(1, settings.DB_READ_RETRIES) if idempotent else 1

            for attempt in range(1, attempts + 1):
                try:
                    return await original_route_handler(request)
                except TRANSIENT_ERRORS as exc:
                    if attempt < attempts:
                        logger.warning(
                            "%s %s: transient database error (%s), retry %s/%s",
                            request.method,
                            request.url.path,
                            exc.__class__.__name__,
                            attempt,
                            attempts - 1,
                        )
                        await asyncio.sleep(0.05 * attempt)
                        continue
                    logger.error("%s %s: database unavailable after %s attempt(s)", request.method, request.url.path, attempt)
                    raise PersistenceError("Database temporarily unavailable") from exc
                except SQLAlchemyError as exc:
                    logger.error("%s %s: database error %s", request.method, request.url.path, exc.__class__.__name__)
                    raise PersistenceError("Database operation failed") from exc

        return route_handler
