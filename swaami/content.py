"""Content negotiation: accept markdown (with YAML frontmatter) or JSON."""

from __future__ import annotations

import json
from typing import TypeVar

import frontmatter
from fastapi import Request, Response
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from swaami.errors import SwaamiError, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


async def parse_body(request: Request, body_key: str = "description") -> dict:
    """Parse request body as JSON or markdown with YAML frontmatter.

    The markdown body (below the frontmatter) lands in ``body_key``: a task's
    description, a message's content.
    """
    content_type = request.headers.get("content-type", "")
    raw = await request.body()
    text = raw.decode("utf-8").strip()

    if not text:
        return {}

    if "application/json" in content_type:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError("Invalid JSON body") from exc
        if not isinstance(data, dict):
            raise ValidationError("Request body must be an object")
        return data

    # Some clients send JSON without a content-type
    if text.startswith("{") and "text/markdown" not in content_type:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

    post = frontmatter.loads(text)
    result = dict(post.metadata)
    if post.content.strip():
        result[body_key] = post.content.strip()
    return result


def wants_json(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return "application/json" in accept or "text/markdown" not in accept


def render_response(
    request: Request,
    data: dict | BaseModel,
    status_code: int = 200,
    headers: dict | None = None,
) -> Response:
    """Return JSON or markdown based on Accept header."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")

    if wants_json(request):
        return Response(
            content=json.dumps(data, indent=2),
            status_code=status_code,
            media_type="application/json",
            headers=headers,
        )

    # Copy before mutating so callers' dicts are not affected
    data = dict(data)

    body_key = None
    for k in ("content", "description", "error"):
        if isinstance(data.get(k), str):
            body_key = k
            break

    if body_key:
        body = data.pop(body_key)
        content = frontmatter.dumps(frontmatter.Post(body, **data)) if data else body
    else:
        content = frontmatter.dumps(frontmatter.Post("", **data))

    return Response(
        content=content,
        status_code=status_code,
        media_type="text/markdown",
        headers=headers,
    )


def render_error(request: Request, exc: SwaamiError) -> Response:
    headers = {"Retry-After": "1"} if exc.payload().get("retryable") else None
    return render_response(request, exc.payload(), status_code=exc.status_code, headers=headers)


def validated(model: type[ModelT], data: dict) -> ModelT:
    """Build a request model, turning pydantic errors into a 400."""
    try:
        return model(**data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "body"
        message = first.get("msg", "Invalid value").removeprefix("Value error, ")
        raise ValidationError(f"{field}: {message}") from exc
