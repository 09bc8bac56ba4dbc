from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import Request, Response
from sqlalchemy import delete, select
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from registry import config
from registry.models import IdempotencyRecord


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Ensures every request/response carries an X-Request-Id header."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:12]}"
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response


def _scoped_key(request: Request, idem_key: str) -> str:
    # Keys are per caller so two issuers cannot replay each other's responses.
    caller = request.headers.get("authorization", "")
    return hashlib.sha256(f"{caller}\n{request.url.path}\n{idem_key}".encode("utf-8")).hexdigest()


def _conflict(request: Request) -> Response:
    return Response(
        content=json.dumps({
            "error": {
                "code": "IDEMPOTENCY_CONFLICT",
                "message": "Idempotency key reused with a different request body",
                "request_id": getattr(request.state, "request_id", ""),
            }
        }),
        status_code=409,
        media_type="application/json",
    )


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """Replays successful POST responses for a repeated Idempotency-Key.

    A retried issue call with the same key and body returns the original
    credential instead of a duplicate-issuance error.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method != "POST":
            return await call_next(request)

        idem_key = request.headers.get("idempotency-key")
        if not idem_key:
            return await call_next(request)

        key = _scoped_key(request, idem_key)
        body_hash = hashlib.sha256(await request.body()).hexdigest()

        session = config.SessionLocal()
        try:
            with session.begin():
                now = datetime.now(timezone.utc)
                session.execute(delete(IdempotencyRecord).where(IdempotencyRecord.expires_at < now))
                record = session.execute(
                    select(IdempotencyRecord).where(IdempotencyRecord.key == key)
                ).scalar_one_or_none()
                if record is not None:
                    if record.request_hash != body_hash:
                        return _conflict(request)
                    return Response(
                        content=record.response_body,
                        status_code=record.status_code,
                        media_type="application/json",
                        headers={"Idempotent-Replay": "true"},
                    )
        finally:
            session.close()

        response = await call_next(request)
        if not 200 <= response.status_code < 300:
            return response

        resp_body = b""
        async for chunk in response.body_iterator:
            resp_body += chunk.encode("utf-8") if isinstance(chunk, str) else chunk

        session = config.SessionLocal()
        try:
            with session.begin():
                session.merge(IdempotencyRecord(
                    key=key,
                    request_hash=body_hash,
                    response_body=resp_body.decode("utf-8"),
                    status_code=response.status_code,
                    expires_at=datetime.now(timezone.utc) + timedelta(hours=config.settings.idempotency_ttl_hours),
                ))
        finally:
            session.close()

        return Response(
            content=resp_body,
            status_code=response.status_code,
            media_type=response.media_type,
            headers=dict(response.headers),
        )
