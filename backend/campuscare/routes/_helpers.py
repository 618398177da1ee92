"""Shared helpers for API routes."""

from __future__ import annotations

import math

from flask import current_app, jsonify, request

from ..errors import CampusCareError, ValidationError


def error_response(exc: CampusCareError):
    return jsonify(exc.to_dict()), exc.status_code


def page_args() -> tuple[int, int]:
    """Read ?page=&limit= with config defaults; limit is capped at MAX_PAGE_SIZE."""
    default_limit = current_app.config.get("DEFAULT_PAGE_SIZE", 10)
    max_limit = current_app.config.get("MAX_PAGE_SIZE", 100)
    try:
        page = int(request.args.get("page", 1))
        limit = int(request.args.get("limit", default_limit))
    except ValueError:
        raise ValidationError("page and limit must be integers")
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")
    return page, min(limit, max_limit)


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }
