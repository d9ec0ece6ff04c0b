import logging
from typing import AsyncIterator, Callable, List, Mapping, Optional, Tuple

import httpx
from fastapi.responses import JSONResponse, Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask

from relay.forwarding.models import (
    JSON_MEDIA_TYPE,
    InboundRequest,
    OutboundRequest,
    RelayBody,
    RelayConfig,
    is_event_stream,
)
from relay.utils import mask_token
from relay.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from relay.utils.traced_requests import traced_request

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Never part of the outbound header set: either invalid once the body is
# re-encoded or transport details of the caller's connection
BLOCKED_OUTBOUND_HEADERS = {
    "content-length",
    "transfer-encoding",
    "host",
    "connection",
    "accept-encoding",
}

# Recomputed by our own transport when the body is re-sent to the caller
STRIPPED_RESPONSE_HEADERS = {
    "content-length",
    "transfer-encoding",
}


def create_upstream_client(
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Shared connection pool for upstream calls.

    No timeout is imposed; the caller's transport decides how long to wait.
    httpx's default Accept-Encoding and Connection headers are dropped so the
    upstream answers uncompressed and the raw bytes can be relayed as they are.
    """
    client = httpx.AsyncClient(
        timeout=None, follow_redirects=False, transport=transport
    )
    for name in ("accept-encoding", "connection"):
        if name in client.headers:
            del client.headers[name]
    return client


def relay_headers(upstream_headers: httpx.Headers) -> List[Tuple[str, str]]:
    """Upstream headers to copy onto the caller's response."""
    return [
        (name, value)
        for name, value in upstream_headers.multi_items()
        if name.lower() not in STRIPPED_RESPONSE_HEADERS
    ]


def _apply_headers(response: Response, headers: List[Tuple[str, str]]) -> Response:
    for name, value in headers:
        response.headers.append(name, value)
    return response


def _body_preview(body: bytes, headers: httpx.Headers) -> str:
    encoding = headers.get("content-encoding")
    if encoding and encoding.lower() != "identity":
        return f"<{len(body)} bytes, content-encoding={encoding}>"
    return body.decode("utf-8", errors="replace")


async def _read_raw(upstream: httpx.Response) -> bytes:
    try:
        return b"".join([chunk async for chunk in upstream.aiter_raw()])
    finally:
        await upstream.aclose()


class ForwardingRelay:
    """
    Turns one inbound call into one upstream call and relays the result.

    The caller never sees the server-held credential and its own
    Authorization header never reaches the upstream.
    """

    def __init__(
        self, config: RelayConfig, client: Optional[httpx.AsyncClient] = None
    ):
        self.config = config
        self._owns_client = client is None
        self.client = client if client is not None else create_upstream_client()

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()

    def build_target_url(self, path: str, query: str = "") -> str:
        """Strip the routing prefix and append the remainder to the upstream origin."""
        prefix = self.config.route_prefix
        if path != prefix and not path.startswith(prefix + "/"):
            raise ValueError(f"Path {path!r} is outside the routing prefix {prefix!r}")

        url = f"{self.config.upstream_origin}{path[len(prefix):]}"
        if query:
            url = f"{url}?{query}"
        return url

    def build_outbound_headers(self, inbound_headers: Mapping[str, str]) -> httpx.Headers:
        inbound = httpx.Headers(inbound_headers)
        headers = httpx.Headers()

        headers["Content-Type"] = inbound.get("content-type") or JSON_MEDIA_TYPE

        feature_flags = inbound.get(self.config.feature_header)
        if feature_flags:
            headers[self.config.feature_header] = feature_flags

        headers["Authorization"] = f"Bearer {self.config.api_key}"

        for name in BLOCKED_OUTBOUND_HEADERS:
            if name in headers:
                del headers[name]
        return headers

    def build_outbound_request(self, inbound: InboundRequest) -> OutboundRequest:
        return OutboundRequest(
            method=inbound.method.upper(),
            url=self.build_target_url(inbound.path, inbound.query),
            headers=self.build_outbound_headers(inbound.headers),
            body=RelayBody.from_inbound(
                inbound.method, inbound.content_type, inbound.body
            ),
        )

    def build_compat_request(self, inbound: InboundRequest) -> OutboundRequest:
        return OutboundRequest(
            method="POST",
            url=self.config.compat_url,
            headers=httpx.Headers(
                {
                    "Content-Type": JSON_MEDIA_TYPE,
                    "Authorization": f"Bearer {self.config.api_key}",
                }
            ),
            body=RelayBody.from_json_bytes(inbound.body),
        )

    async def forward(self, inbound: InboundRequest) -> Response:
        """Relay any call under the routing prefix, streaming event-stream responses."""
        return await self._dispatch(
            "relay_forward",
            "[Relay]",
            inbound,
            self.build_outbound_request,
            allow_stream=True,
        )

    async def forward_compat(self, inbound: InboundRequest) -> Response:
        """Relay a chat completion posted to the compatibility path, always buffered."""
        return await self._dispatch(
            "relay_forward_compat",
            "[Relay-Compat]",
            inbound,
            self.build_compat_request,
            allow_stream=False,
        )

    async def _send(self, outbound: OutboundRequest) -> httpx.Response:
        request = self.client.build_request(
            outbound.method,
            outbound.url,
            headers=outbound.headers,
            content=outbound.content,
        )
        return await self.client.send(request, stream=True)

    async def _dispatch(
        self,
        operation: str,
        prefix: str,
        inbound: InboundRequest,
        build_outbound: Callable[[InboundRequest], OutboundRequest],
        allow_stream: bool,
    ) -> Response:
        target_url = None
        upstream = None
        try:
            outbound = build_outbound(inbound)
            target_url = outbound.url
            logger.debug(
                mask_token(
                    f"{prefix} Outbound headers: {dict(outbound.headers)}",
                    self.config.api_key,
                )
            )

            with traced_request(
                tracer,
                operation=operation,
                method=outbound.method,
                target_url=target_url,
                start_message=f"{prefix} {inbound.method} {inbound.path} -> {target_url}",
                secret=self.config.api_key,
            ) as span:
                try:
                    upstream = await self._send(outbound)
                    span.set_attribute("relay.status_code", upstream.status_code)
                    return await self._relay_response(
                        upstream, prefix, target_url, allow_stream, span
                    )
                except Exception as e:
                    span.set_attribute("relay.error", format_exception_message(e))
                    raise

        except Exception as e:
            log_exception_with_details(
                logger,
                prefix,
                e,
                context={
                    "method": inbound.method,
                    "target": target_url,
                    "status": upstream.status_code if upstream is not None else None,
                },
            )
            return JSONResponse(
                status_code=500, content={"error": format_exception_message(e)}
            )

    async def _relay_response(
        self,
        upstream: httpx.Response,
        prefix: str,
        target_url: str,
        allow_stream: bool,
        span,
    ) -> Response:
        headers = relay_headers(upstream.headers)

        if not upstream.is_success:
            body = await _read_raw(upstream)
            logger.error(
                f"{prefix} Upstream error: {upstream.status_code} {target_url} "
                f"{_body_preview(body, upstream.headers)}"
            )
            return _apply_headers(
                Response(content=body, status_code=upstream.status_code), headers
            )

        if allow_stream and is_event_stream(upstream.headers.get("content-type")):
            span.set_attribute("relay.streaming", True)
            logger.debug(f"{prefix} Streaming {upstream.status_code} from {target_url}")
            response = StreamingResponse(
                self._stream_body(upstream, prefix, target_url),
                status_code=upstream.status_code,
                background=BackgroundTask(upstream.aclose),
            )
            return _apply_headers(response, headers)

        span.set_attribute("relay.streaming", False)
        body = await _read_raw(upstream)
        logger.debug(
            f"{prefix} Upstream response: {upstream.status_code} "
            f"({len(body)} bytes) {_body_preview(body, upstream.headers)}"
        )
        return _apply_headers(
            Response(content=body, status_code=upstream.status_code), headers
        )

    async def _stream_body(
        self, upstream: httpx.Response, prefix: str, target_url: str
    ) -> AsyncIterator[bytes]:
        """Yield upstream chunks as they arrive; upstream failures abort the caller's stream."""
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except Exception as e:
            log_exception_with_details(
                logger,
                f"{prefix} Stream",
                e,
                context={"target": target_url, "status": upstream.status_code},
            )
            raise
        finally:
            await upstream.aclose()
