"""
HTTP blueprints (JSON API).

Routes stay thin: parse the request, build the Actor, call a service, jsonify.
"""

from __future__ import annotations

from flask import request

from ..errors import ValidationError


def json_body() -> dict:
    """The request's JSON object; an empty body counts as {}."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
