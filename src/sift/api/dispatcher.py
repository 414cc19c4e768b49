"""RPC-style request dispatcher.

A request is a flat parameter map (query string merged with a JSON body)
carrying a ``type`` field. Every response is an envelope:

    {"success": true,  "data": {...},                       "timestamp": ..., "status": 200}
    {"success": false, "error": {"message": ..., "code": ...}, "timestamp": ..., "status": 4xx/500}

Booleans may arrive as strings ("true", "1", "yes").
"""

from __future__ import annotations

import hmac
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from sift.errors import (
    AuthError,
    NotFoundError,
    Severity,
    SiftError,
    ValidationError,
    user_message,
)
from sift.rag.retriever import SearchOptions, SearchResponse
from sift.rag.synthesizer import GenerateOptions

if TYPE_CHECKING:
    from sift.service import SiftService

logger = logging.getLogger(__name__)

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off", ""}


class RequestType(str, Enum):
    SEARCH = "search"
    GENERATE_RESPONSE = "generate_response"
    GET_DOCUMENT = "get_document"
    GET_TEMPLATES = "get_templates"
    GET_CATEGORIES = "get_categories"
    PROCESS_DOCUMENT = "process_document"
    HEALTH_CHECK = "health_check"


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def ok(data: Any, status: int = 200) -> dict[str, Any]:
    return {"success": True, "data": data, "timestamp": _timestamp(), "status": status}


def fail(message: str, code: str, status: int) -> dict[str, Any]:
    return {
        "success": False,
        "error": {"message": message, "code": code},
        "timestamp": _timestamp(),
        "status": status,
    }


# ---------------------------------------------------------------------------
# Parameter parsing
# ---------------------------------------------------------------------------


def parse_bool(value: Any, default: bool | None = None) -> bool | None:
    """Parse a bool that may arrive as a string."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValidationError(f"Expected a boolean, got {value!r}")


def _parse_number(params: dict[str, Any], name: str, cast: Callable[[Any], Any]) -> Any:
    value = params.get(name)
    if value is None or value == "":
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Parameter '{name}' must be a number") from None


def _parse_object(params: dict[str, Any], name: str) -> dict[str, Any] | None:
    """Return a JSON-object parameter, accepting an encoded string."""
    value = params.get(name)
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            raise ValidationError(f"Parameter '{name}' is not valid JSON") from None
    if not isinstance(value, dict):
        raise ValidationError(f"Parameter '{name}' must be an object")
    return value


def _require(params: dict[str, Any], name: str) -> str:
    value = params.get(name)
    if value is None or not str(value).strip():
        raise ValidationError(f"Parameter '{name}' is required")
    return str(value)


def is_admin(service: SiftService, params: dict[str, Any], caller: str | None) -> bool:
    """True when the request carries the admin key or comes from an allowlisted caller."""
    admin_key = service.config.admin_key
    api_key = params.get("api_key")
    if admin_key and api_key and hmac.compare_digest(str(api_key), admin_key):
        return True
    return bool(caller) and caller in service.config.admin.allowlist


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _search(service: SiftService, params: dict[str, Any], caller: str | None) -> dict[str, Any]:
    query = _require(params, "query")
    options = SearchOptions(
        category=params.get("category") or None,
        language=params.get("language") or None,
        limit=_parse_number(params, "limit", int),
        expand_query=parse_bool(params.get("expand_query"), True),
        semantic_weight=_parse_number(params, "semantic_weight", float),
        keyword_weight=_parse_number(params, "keyword_weight", float),
        use_cache=parse_bool(params.get("use_cache"), True),
    )
    if options.limit is not None and options.limit < 1:
        raise ValidationError("Parameter 'limit' must be >= 1")

    response = service.retriever.search(query, options)
    if not response.success:
        return fail(response.error or "Search failed", "search_failed", 500)

    service.retriever.remember(response)
    data = response.to_dict()
    cap = service.config.search.transport_content_chars
    for item in data["results"]:
        if len(item["content"]) > cap:
            item["content"] = item["content"][:cap]
            item["truncated"] = True
    return ok(data)


def _generate_response(service: SiftService, params: dict[str, Any], caller: str | None) -> dict[str, Any]:
    search_response: SearchResponse | None = None
    raw = _parse_object(params, "search_results")
    if raw is not None:
        search_response = SearchResponse.from_dict(raw)
    elif params.get("search_results_id"):
        search_response = service.retriever.search_results_for(str(params["search_results_id"]))
        if search_response is None:
            raise NotFoundError("Search results have expired or do not exist; run the search again")
    else:
        raise ValidationError("Either 'search_results' or 'search_results_id' is required")

    custom = _parse_object(params, "custom_params") or {}

    enhance = params.get("enhance")
    if enhance is None:
        enhance = params.get("enhance_with_gemini")
    options = GenerateOptions(
        response_type=params.get("response_type") or "standard",
        language=params.get("language") or None,
        template_id=params.get("template_id") or None,
        custom_params=custom,
        enhance=parse_bool(enhance),
    )
    query = str(params.get("query") or search_response.query)
    generated = service.synthesizer.generate_response(search_response, query, options)
    if not generated.success:
        return fail(generated.error or "Response generation failed", "generation_failed", 400)
    return ok(generated.to_dict())


def _get_document(service: SiftService, params: dict[str, Any], caller: str | None) -> dict[str, Any]:
    document_id = _require(params, "document_id")
    document = service.repository.get_document(document_id)
    if document is None:
        raise NotFoundError(f"Document '{document_id}' not found")
    data = {
        "id": document.id,
        "title": document.title,
        "content": document.content,
        "category": document.category,
        "language": document.language,
        "path": document.path,
        "format": document.format,
        "metadata": document.metadata,
        "last_updated": document.last_updated,
        "counterpart_id": service.repository.get_counterpart_id(document.id),
    }
    if parse_bool(params.get("include_chunks"), False):
        data["chunks"] = [
            {"id": c.id, "content": c.content, "metadata": c.metadata}
            for c in service.chunk_store.get_chunks_by_document(document.id)
        ]
    return ok(data)


def _get_templates(service: SiftService, params: dict[str, Any], caller: str | None) -> dict[str, Any]:
    templates = service.catalog.list_templates(
        response_type=params.get("response_type") or None,
        language=params.get("language") or None,
    )
    return ok(
        [
            {
                "id": t.id,
                "name": t.name,
                "type": t.type,
                "language": t.language,
                "categories": t.categories,
                "builtin": bool(t.metadata.get("builtin")),
            }
            for t in templates
        ]
    )


def _get_categories(service: SiftService, params: dict[str, Any], caller: str | None) -> dict[str, Any]:
    categories = sorted(set(service.repository.list_categories()) | set(service.chunk_store.list_categories()))
    return ok(categories)


def _process_document(service: SiftService, params: dict[str, Any], caller: str | None) -> dict[str, Any]:
    if not is_admin(service, params, caller):
        raise AuthError("Admin privileges are required to process documents")
    file_id = _require(params, "file_id")
    options = {
        "language": params.get("language") or None,
        "category": params.get("category") or None,
        "generate_embeddings": parse_bool(params.get("generate_embeddings"), True),
        "pair_with": params.get("pair_with") or None,
    }
    try:
        report = service.pipeline.process_document(file_id, **options)
    except (AuthError, NotFoundError, ValidationError):
        raise
    except Exception as exc:
        handled = service.errors.handle(
            exc,
            operation="process_document",
            context={"file_id": file_id, "options": options},
            severity=Severity.HIGH,
            retry=True,
        )
        if not handled.recovered:
            raise
        report = handled.result
    return ok(report.to_dict())


def _health_check(service: SiftService, params: dict[str, Any], caller: str | None) -> dict[str, Any]:
    detailed = parse_bool(params.get("detailed"), False)
    if detailed and not is_admin(service, params, caller):
        raise AuthError("Admin privileges are required for detailed health information")
    return ok(service.health(detailed=bool(detailed)))


_HANDLERS: dict[RequestType, Callable[[SiftService, dict[str, Any], str | None], dict[str, Any]]] = {
    RequestType.SEARCH: _search,
    RequestType.GENERATE_RESPONSE: _generate_response,
    RequestType.GET_DOCUMENT: _get_document,
    RequestType.GET_TEMPLATES: _get_templates,
    RequestType.GET_CATEGORIES: _get_categories,
    RequestType.PROCESS_DOCUMENT: _process_document,
    RequestType.HEALTH_CHECK: _health_check,
}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def handle_request(
    params: dict[str, Any],
    service: SiftService,
    caller: str | None = None,
) -> dict[str, Any]:
    """Dispatch one request. Never raises; failures become error envelopes."""
    raw_type = str(params.get("type") or "").strip()
    try:
        request_type = RequestType(raw_type)
    except ValueError:
        return fail(f"Unknown request type '{raw_type}'", "unknown_request_type", 400)

    try:
        return _HANDLERS[request_type](service, params, caller)
    except SiftError as exc:
        logger.info("%s rejected (%s): %s", request_type.value, exc.code, exc)
        return fail(str(exc), exc.code, exc.status)
    except Exception as exc:
        language = params.get("language") or service.config.language.default
        service.errors.handle(
            exc, operation=request_type.value, context={"type": request_type.value}, severity=Severity.HIGH
        )
        return fail(user_message(exc, language).message, "internal_error", 500)
