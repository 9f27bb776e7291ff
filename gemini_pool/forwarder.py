from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, Response
from loguru import logger

from .config import Constants, Settings, mask_key
from .errors import NoAvailableKeyError
from .selector import KeySelector
from .state import PoolState

BODYLESS_METHODS = {"GET", "HEAD"}

HeaderPair = Tuple[Union[str, bytes], Union[str, bytes]]


@dataclass
class InboundRequest:
    """The parts of a client request needed to forward it upstream."""
    method: str
    path: str
    query_params: List[Tuple[str, str]] = field(default_factory=list)
    headers: List[HeaderPair] = field(default_factory=list)
    body: Optional[bytes] = None

    @classmethod
    async def from_request(cls, request: Request) -> "InboundRequest":
        """Capture an incoming FastAPI request."""
        method = request.method.upper()
        return cls(
            method=method,
            path=request.url.path,
            query_params=list(request.query_params.multi_items()),
            # raw bytes keep obs-text values intact
            headers=list(request.headers.raw),
            body=None if method in BODYLESS_METHODS else await request.body(),
        )


def _latin1(value: Union[str, bytes]) -> bytes:
    return value if isinstance(value, bytes) else value.encode("latin-1")


def prepare_forward_headers(headers: List[HeaderPair]) -> List[Tuple[bytes, bytes]]:
    """
    Prepare headers for forwarding, removing sensitive or connection-specific ones.

    Any inbound Authorization header is dropped: the upstream is
    authenticated only through the key query parameter. Names and values
    are passed on as latin-1 bytes so httpx never re-encodes them.

    Raises:
        UnicodeEncodeError: If a str header holds characters outside latin-1
    """
    forwarded = []
    for name, value in headers:
        raw_name = _latin1(name)
        if raw_name.decode("latin-1").lower() in Constants.EXCLUDED_HEADERS:
            continue
        forwarded.append((raw_name, _latin1(value)))
    return forwarded


class ProxyForwarder:
    """Forwards one client request upstream using a key drawn from the pool."""

    def __init__(
        self,
        state: PoolState,
        selector: KeySelector,
        settings: Settings,
        http_client: httpx.AsyncClient,
    ):
        self.state = state
        self.selector = selector
        self.settings = settings
        self.http_client = http_client

    def upstream_path(self, path: str) -> str:
        """Strip the local proxy prefix; pass-through paths are kept as is."""
        prefix = self.settings.proxy_prefix
        if path == prefix or path.startswith(f"{prefix}/"):
            return path[len(prefix):] or "/"
        return path

    def build_request_kwargs(self, inbound: InboundRequest, api_key: str) -> Dict[str, Any]:
        """Build kwargs dictionary for the httpx request."""
        key_param = self.settings.key_param
        params = [(k, v) for k, v in inbound.query_params if k != key_param]
        params.append((key_param, api_key))

        kwargs: Dict[str, Any] = {
            "method": inbound.method,
            "url": f"{self.settings.upstream_base_url}{self.upstream_path(inbound.path)}",
            "params": params,
            "headers": prepare_forward_headers(inbound.headers),
            "timeout": httpx.Timeout(self.settings.request_timeout),
        }
        if inbound.method not in BODYLESS_METHODS and inbound.body is not None:
            kwargs["content"] = inbound.body
        return kwargs

    async def forward(self, inbound: InboundRequest) -> Response:
        """
        Proxy a single request.

        Exactly one key is drawn and nothing is retried. The upstream status
        and body are relayed unchanged; a non-2xx status still counts as a
        failure for the key that was used.

        Returns:
            The relayed upstream response, 503 when no key is enabled, or
            500 when the upstream request could not be built or sent.
        """
        try:
            api_key = self.selector.pick().key
        except NoAvailableKeyError as e:
            self.state.error_log.append(Constants.NO_KEY_SENTINEL, str(e), inbound.path)
            return JSONResponse({"error": str(e)}, status_code=503, headers=Constants.CORS_HEADERS)

        logger.info(f"Proxying {inbound.method} {inbound.path} (key: {mask_key(api_key)})")

        try:
            upstream_request = self.http_client.build_request(**self.build_request_kwargs(inbound, api_key))
            response = await self.http_client.send(upstream_request)
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeEncodeError) as e:
            message = str(e) or e.__class__.__name__
            logger.error(
                f"Failure: request error for path '{inbound.path}'. Key: {mask_key(api_key)}. Error: {message}"
            )
            self.state.report_outcome(api_key, False, message, inbound.path)
            return JSONResponse({"error": message}, status_code=500, headers=Constants.CORS_HEADERS)

        if response.is_success:
            self.state.report_outcome(api_key, True, request_path=inbound.path)
            logger.info(
                f"Success: proxied '{inbound.path}'. Key: {mask_key(api_key)}. Status: {response.status_code}."
            )
        else:
            logger.error(
                f"Failure: upstream returned {response.status_code} for path '{inbound.path}'. "
                f"Key: {mask_key(api_key)}."
            )
            self.state.report_outcome(
                api_key, False, f"HTTP {response.status_code}", inbound.path, response.text
            )

        return self.relay(response)

    @staticmethod
    def relay(response: httpx.Response) -> Response:
        """Copy status and body from the upstream, echoing its content type."""
        headers = dict(Constants.CORS_HEADERS)
        headers["Content-Type"] = response.headers.get("content-type", Constants.DEFAULT_CONTENT_TYPE)
        return Response(content=response.content, status_code=response.status_code, headers=headers)
