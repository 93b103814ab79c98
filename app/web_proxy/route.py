import logging
from typing import AsyncIterator

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace

from app.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from app.utils.traced_requests import traced_request
from app.vars import APP_VERSION_DEFAULT, PROXY_PATH_PREFIX
from .errors import ProxyInputError
from .headers import (
    apply_cors,
    cors_headers,
    filter_response_headers,
    header_value,
    sanitize_request_headers,
)
from .rewriter import (
    RewriteContext,
    is_rewritable,
    is_xml_document,
    rewrite_stream,
)
from .target import (
    guard_against_loop,
    proxy_origin,
    raw_target_segment,
    resolve_target,
)
from .upstream import (
    HttpClientFactory,
    fetch_upstream,
    get_http_client_factory,
    lookup_app_version,
    request_has_body,
)

router = APIRouter(prefix=PROXY_PATH_PREFIX)
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def error_response(exception: Exception, requested: str, app_version: str) -> Response:
    """Uniform 502 for anything that went wrong after input validation."""
    message = format_exception_message(exception)
    return Response(
        f"Proxy failed: {message}\n\nTarget: {requested}",
        status_code=502,
        headers=cors_headers(app_version),
        media_type="text/plain",
    )


async def _relay_body(
    chunks: AsyncIterator[bytes], upstream: httpx.Response, client: httpx.AsyncClient
) -> AsyncIterator[bytes]:
    """
    Pump the upstream body to the client.

    Closing happens in ``finally`` so a client that goes away mid-stream
    (cancellation) also tears down the upstream connection.
    """
    try:
        async for chunk in chunks:
            yield chunk
    except Exception as e:
        # Headers are already on the wire; the status can no longer change.
        log_exception_with_details(logger, "[Proxy] Stream aborted:", e)
        raise
    finally:
        if hasattr(chunks, "aclose"):
            await chunks.aclose()
        await upstream.aclose()
        await client.aclose()


def assemble_response(
    outbound: httpx.Request,
    upstream: httpx.Response,
    client: httpx.AsyncClient,
    target: str,
    origin: str,
    app_version: str,
) -> StreamingResponse:
    content_type = upstream.headers.get("content-type")
    rewritten = is_rewritable(content_type)
    if rewritten:
        context = RewriteContext(
            proxy_base=f"{origin}{PROXY_PATH_PREFIX}/", base_url=target
        )
        chunks = rewrite_stream(
            upstream.aiter_bytes(),
            context,
            upstream.charset_encoding,
            xml=is_xml_document(content_type),
        )
    else:
        chunks = upstream.aiter_raw()

    response = StreamingResponse(
        _relay_body(chunks, upstream, client), status_code=upstream.status_code
    )
    for name, value in filter_response_headers(upstream.headers, rewritten):
        response.headers.append(name, value)

    response.headers["X-Proxy-Target"] = header_value(target)
    response.headers["X-Proxy-Request-URL"] = header_value(str(outbound.url))
    response.headers["X-Fetched-URL"] = header_value(str(upstream.url))
    apply_cors(response.headers, app_version)
    return response


async def relay(request: Request, client_factory: HttpClientFactory) -> Response:
    """
    Resolve, guard, fetch and stream one proxied request.

    Every stage runs inside the same boundary: input problems become a 400
    with their message, everything else a 502 naming the requested target.
    """
    segment = raw_target_segment(request, PROXY_PATH_PREFIX)
    requested = segment or ""
    app_version = APP_VERSION_DEFAULT
    client = client_factory()
    handed_off = False

    with traced_request(
        tracer,
        operation="proxy_request",
        method=request.method,
        target=None,
        start_message=f"[Proxy] {request.method} {requested}",
    ) as span:
        try:
            target = resolve_target(segment)
            requested = target
            span.set_attribute("proxy.target_url", target)

            origin = proxy_origin(request)
            guard_against_loop(target, origin)

            app_version = await lookup_app_version(client, origin)

            if request.method == "OPTIONS":
                span.set_attribute("proxy.status_code", 204)
                return Response(status_code=204, headers=cors_headers(app_version))

            headers = sanitize_request_headers(request.headers.items(), target)
            body = request.stream() if request_has_body(request.headers) else None
            outbound, upstream = await fetch_upstream(
                client, target, request.method, headers, body
            )
            span.set_attribute("proxy.status_code", upstream.status_code)
            logger.debug(
                f"[Proxy] {request.method} {target} -> {upstream.status_code} ({upstream.url})"
            )

            response = assemble_response(
                outbound, upstream, client, target, origin, app_version
            )
            span.set_attribute(
                "proxy.content_kind",
                "rewritten"
                if is_rewritable(upstream.headers.get("content-type"))
                else "passthrough",
            )
            handed_off = True
            return response

        except ProxyInputError as e:
            logger.info(f"[Proxy] Rejected {requested!r}: {e}")
            span.set_attribute("proxy.error", type(e).__name__)
            span.set_attribute("proxy.status_code", e.status_code)
            return Response(
                str(e),
                status_code=e.status_code,
                headers=cors_headers(app_version),
                media_type="text/plain",
            )
        except Exception as e:
            log_exception_with_details(logger, f"[Proxy] {requested}:", e)
            span.set_attribute("proxy.error", format_exception_message(e))
            span.set_attribute("proxy.status_code", 502)
            return error_response(e, requested, app_version)
        finally:
            if not handed_off:
                await client.aclose()


@router.api_route("", methods=PROXY_METHODS, include_in_schema=False)
@router.api_route("/{target:path}", methods=PROXY_METHODS)
async def proxy_target(
    request: Request,
    client_factory: HttpClientFactory = Depends(get_http_client_factory),
):
    """Relay the request to the percent-encoded target carried in the path."""
    return await relay(request, client_factory)
