import httpx
from fastapi import APIRouter, Depends, HTTPException, Request

from relay.forwarding.models import InboundRequest, RelayConfig
from relay.forwarding.relay import ForwardingRelay


def get_relay(request: Request) -> ForwardingRelay:
    """Dependency resolving the relay the application was built with."""
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise HTTPException(status_code=503, detail="Relay is not configured")
    return relay


def inbound_path(request: Request) -> str:
    """The path exactly as the caller sent it, percent-escapes included."""
    raw_path = request.scope.get("raw_path")
    if not raw_path:
        return request.url.path
    return raw_path.split(b"?", 1)[0].decode("latin-1")


async def read_inbound(request: Request) -> InboundRequest:
    return InboundRequest(
        method=request.method,
        path=inbound_path(request),
        headers=httpx.Headers(request.headers.raw),
        body=await request.body(),
        query=str(request.url.query),
    )


def create_router(config: RelayConfig) -> APIRouter:
    router = APIRouter()

    # Registered first so it wins when the compat path sits under the prefix
    @router.post(config.compat_path)
    async def relay_compat(
        request: Request, relay: ForwardingRelay = Depends(get_relay)
    ):
        """Chat completion endpoint kept for callers that predate the prefix route."""
        return await relay.forward_compat(await read_inbound(request))

    async def relay_all(request: Request):
        """Catch-all route that relays every call under the prefix to the upstream."""
        relay = get_relay(request)
        return await relay.forward(await read_inbound(request))

    # Plain route without a method list, so every method reaches the upstream
    router.add_route(
        f"{config.route_prefix}/{{path:path}}",
        relay_all,
        methods=None,
        include_in_schema=False,
    )

    return router
