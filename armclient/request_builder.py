import json
import re
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence
from urllib.parse import quote, quote_plus

from loguru import logger
from pydantic import BaseModel

from armclient.exceptions import (
    EncodingError,
    MalformedTemplate,
    ParameterValidationError,
)
from armclient.models import JSON_CONTENT_TYPE, OperationRequest, ParameterRule

_PLACEHOLDER = re.compile(r"\{([^{}]*)\}")


def _render(name: str, value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int)):
        return str(value)
    raise EncodingError(
        f"parameter {name!r} has unsupported type {type(value).__name__}"
    )


def encode_path_value(name: str, value: Any) -> str:
    """Percent-encode a value for a single path segment"""
    text = _render(name, value)
    if text in ("", ".", ".."):
        raise EncodingError(f"path parameter {name!r} cannot be {text!r}")
    try:
        return quote(text, safe="")
    except UnicodeEncodeError as exc:
        raise EncodingError(f"path parameter {name!r} is not valid UTF-8") from exc


def encode_query_value(name: str, value: Any) -> str:
    """Form-encode a value for the query string"""
    text = _render(name, value)
    try:
        return quote_plus(text, safe="")
    except UnicodeEncodeError as exc:
        raise EncodingError(f"query parameter {name!r} is not valid UTF-8") from exc


def expand_template(
    template: str,
    path_params: Optional[Mapping[str, Any]] = None,
    unencoded: Iterable[str] = (),
) -> str:
    params = path_params or {}
    verbatim = set(unencoded)

    def substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if not name:
            raise MalformedTemplate(f"empty placeholder in template {template!r}")
        if name not in params:
            raise MalformedTemplate(
                f"placeholder {{{name}}} in template {template!r} has no parameter"
            )
        if name in verbatim:
            return _render(name, params[name])
        return encode_path_value(name, params[name])

    # Braces left after substitution means the template itself is unbalanced.
    stripped = _PLACEHOLDER.sub("", template)
    if "{" in stripped or "}" in stripped:
        raise MalformedTemplate(f"unbalanced braces in template {template!r}")
    return _PLACEHOLDER.sub(substitute, template)


def encode_query(query_params: Optional[Mapping[str, Any]] = None) -> str:
    if not query_params:
        return ""
    pairs = []
    for name in sorted(query_params):
        value = query_params[name]
        if value is None:
            continue
        pairs.append(f"{quote_plus(name, safe='$')}={encode_query_value(name, value)}")
    return "&".join(pairs)


def serialize_body(body: Any) -> Optional[bytes]:
    if body is None:
        return None
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    if isinstance(body, BaseModel):
        return body.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")
    try:
        return json.dumps(body, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"request body cannot be serialized: {exc}") from exc


def join_url(base_url: str, path: str) -> str:
    if path.startswith(("http://", "https://")):
        return path
    if not path.startswith("/"):
        path = "/" + path
    return base_url.rstrip("/") + path


def build(
    method: str,
    template: str,
    path_params: Optional[Mapping[str, Any]] = None,
    query_params: Optional[Mapping[str, Any]] = None,
    body: Any = None,
    *,
    base_url: str = "",
    unencoded: Iterable[str] = (),
    headers: Optional[Mapping[str, str]] = None,
) -> OperationRequest:
    """Resolve a URL template and body into an immutable request"""
    url = join_url(base_url, expand_template(template, path_params, unencoded))
    query = encode_query(query_params)
    if query:
        url = f"{url}{'&' if '?' in url else '?'}{query}"

    request_headers: Dict[str, str] = dict(headers or {})
    payload = serialize_body(body)
    if payload is not None:
        request_headers.setdefault("Content-Type", JSON_CONTENT_TYPE)

    logger.debug(f"Prepared {method.upper()} {url}")
    return OperationRequest(
        method=method.upper(), url=url, headers=request_headers, body=payload
    )


def validate_parameters(
    rules: Sequence[ParameterRule], values: Mapping[str, Any]
) -> None:
    """Check parameter values against declared constraints before building"""
    for rule in rules:
        value = values.get(rule.name)
        if value is None or value == "":
            if rule.required:
                raise ParameterValidationError(f"parameter {rule.name!r} is required")
            continue
        text = _render(rule.name, value) if not isinstance(value, str) else value
        if rule.max_length is not None and len(text) > rule.max_length:
            raise ParameterValidationError(
                f"parameter {rule.name!r} is longer than {rule.max_length} characters"
            )
        if rule.pattern is not None and re.match(rule.pattern, text) is None:
            raise ParameterValidationError(
                f"parameter {rule.name!r} does not match pattern {rule.pattern}"
            )
