from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
import json
from time import time
from types import TracebackType
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Protocol,
    Sequence,
    Tuple,
    Union,
)
import logging
from urllib.parse import parse_qsl, urlparse
from aiohttp import ClientError, ClientResponse, ClientSession, hdrs
from aiohttp.typedefs import StrOrURL
from multidict import CIMultiDictProxy

from social.graze.quota.app.config import FORM_CONTENT_TYPE
from social.graze.quota.app.metrics import MetricsClient
from social.graze.quota.errors import NetworkError, ProtocolError

RequestFunc = Callable[..., Awaitable[ClientResponse]]

logger = logging.getLogger(__name__)


class _LoggerStub(Protocol):
    """_Logger defines which methods logger object should have."""

    @abstractmethod
    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        pass

    @abstractmethod
    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        pass

    @abstractmethod
    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        pass


_LoggerType = Union[_LoggerStub, logging.Logger]


@dataclass
class ChainRequest:
    method: str
    url: StrOrURL
    headers: dict[str, Any] | None = None
    trace_request_ctx: dict[str, Any] | None = None
    kwargs: dict[str, Any] | None = None


@dataclass
class ChainResponse:
    status: int
    headers: CIMultiDictProxy[str]
    body: str | bytes | dict[str, Any] | None = None

    @staticmethod
    async def from_aiohttp_response(response: ClientResponse) -> "ChainResponse":
        status = response.status
        headers = response.headers

        content_type = response.headers.get(hdrs.CONTENT_TYPE, "")

        if content_type.startswith("application/json"):
            return ChainResponse(
                status=status, headers=headers, body=await response.json()
            )
        elif content_type.startswith(FORM_CONTENT_TYPE):
            text = await response.text()
            return ChainResponse(
                status=status,
                headers=headers,
                body=dict(parse_qsl(text, keep_blank_values=True)),
            )
        elif content_type.startswith("text/"):
            return ChainResponse(
                status=status, headers=headers, body=await response.text()
            )
        else:
            return ChainResponse(
                status=status, headers=headers, body=await response.read()
            )

    @property
    def content_type(self) -> str:
        return self.headers.get(hdrs.CONTENT_TYPE, "")

    @property
    def is_form(self) -> bool:
        return self.content_type.startswith(FORM_CONTENT_TYPE)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def as_query(self) -> Dict[str, str]:
        """
        Read the body as a query string, whatever content type it was labelled with.

        Decoded dictionaries (form or JSON) are returned as they are.
        """
        if isinstance(self.body, dict):
            return {str(k): v for k, v in self.body.items()}
        if isinstance(self.body, bytes):
            text = self.body.decode("utf-8", errors="replace")
        elif isinstance(self.body, str):
            text = self.body
        else:
            return {}
        return dict(parse_qsl(text.strip(), keep_blank_values=True))

    def preview(self, limit: int = 200) -> str:
        if isinstance(self.body, dict):
            text = json.dumps(self.body)
        elif isinstance(self.body, bytes):
            text = self.body.decode("utf-8", errors="replace")
        else:
            text = str(self.body or "")
        if len(text) > limit:
            return f"{text[:limit]}..."
        return text


NextChainResponseCallbackType = Tuple[ClientResponse, ChainResponse]

NextChainCallbackType = Callable[
    [ChainRequest], Awaitable[NextChainResponseCallbackType]
]


class RequestMiddlewareBase(ABC):
    @abstractmethod
    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        pass

    def handle_gen(self, next: NextChainCallbackType) -> NextChainCallbackType:
        async def next_invoke(request: ChainRequest) -> NextChainResponseCallbackType:
            return await self.handle(next, request)

        return next_invoke


class StaticHeadersMiddleware(RequestMiddlewareBase):
    """Adds fixed headers, such as the client identifier, without overriding explicit ones."""

    def __init__(self, headers: Dict[str, str]) -> None:
        super().__init__()
        self._headers = headers

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        if request.headers is None:
            request.headers = {}
        for key, value in self._headers.items():
            request.headers.setdefault(key, value)
        return await next(request)


class TokenAuthorizationMiddleware(RequestMiddlewareBase):
    """Attaches 'Authorization: token <value>' for a bearer token."""

    def __init__(self, authorization_header: str) -> None:
        super().__init__()
        self._authorization_header = authorization_header

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        if request.headers is None:
            request.headers = {}
        request.headers[hdrs.AUTHORIZATION] = self._authorization_header
        return await next(request)


class StatsdMiddleware(RequestMiddlewareBase):
    def __init__(self, metrics_client: MetricsClient) -> None:
        super().__init__()
        self._metrics_client = metrics_client

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        url = urlparse(str(request.url))
        tags = {"method": request.method, "host": url.hostname or "", "path": url.path}

        start_time = time()
        response_status_code = 0
        try:
            client_response, chain_response = await next(request)
            response_status_code = chain_response.status
            return client_response, chain_response
        except Exception as e:
            self._metrics_client.increment(
                "client.request.exception",
                1,
                tag_dict={"exception": type(e).__name__, **tags},
            )
            raise e
        finally:
            self._metrics_client.timer("client.request.time", time() - start_time, tags)
            self._metrics_client.increment(
                "client.request.count",
                1,
                tag_dict={"status": response_status_code, **tags},
            )


class EndOfLineChainMiddleware:
    def __init__(
        self,
        request_func: RequestFunc,
        logger: _LoggerType,
        raise_for_status: bool = False,
    ) -> None:
        super().__init__()
        self._request_func = request_func
        self._raise_for_status = raise_for_status
        self._logger = logger

    async def handle(self, request: ChainRequest) -> NextChainResponseCallbackType:

        # Headers and form bodies may carry secrets, only the target is logged.
        self._logger.debug(f"Making request: {request.method} {request.url}")

        try:
            response: ClientResponse = await self._request_func(
                request.method.lower(),
                request.url,
                headers=request.headers,
                trace_request_ctx={
                    **(request.trace_request_ctx or {}),
                },
                **(request.kwargs or {}),
            )
            chain_response = await ChainResponse.from_aiohttp_response(response)
        except (ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(
                f"{request.method} {request.url} failed: {type(e).__name__}: {e}"
            ) from e
        except ValueError as e:
            raise ProtocolError(
                f"{request.method} {request.url} returned an undecodable body: {e}"
            ) from e

        if self._raise_for_status and not chain_response.ok:
            response.release()
            raise NetworkError(
                f"{request.method} {request.url} returned HTTP {chain_response.status}",
                status=chain_response.status,
            )

        return response, chain_response


class ChainMiddlewareContext:
    def __init__(
        self,
        chain_callback: NextChainCallbackType,
        chain_request: ChainRequest,
    ) -> None:
        self._chain_callback = chain_callback
        self._chain_request = chain_request

        self.client_response: ClientResponse | None = None

    async def _do_request(self) -> Tuple[ClientResponse, ChainResponse]:
        client_response, chain_response = await self._chain_callback(
            self._chain_request
        )
        self.client_response = client_response
        return client_response, chain_response

    async def __aenter__(self) -> Tuple[ClientResponse, ChainResponse]:
        return await self._do_request()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.client_response is not None and not self.client_response.closed:
            self.client_response.close()


class ChainMiddlewareClient:
    def __init__(
        self,
        client_session: ClientSession | None = None,
        logger: _LoggerType | None = None,
        middleware: Sequence[RequestMiddlewareBase] | None = None,
        raise_for_status: bool = False,
        *args: Any,
        **kwargs: Any,
    ) -> None:
        if client_session is not None:
            client = client_session
            closed = None
        else:
            client = ClientSession(*args, **kwargs)
            closed = False

        self._middleware = middleware

        self._client = client
        self._closed = closed

        self._logger: _LoggerType = logger or logging.getLogger("aiohttp_chain")
        self._raise_for_status = raise_for_status

    def with_middleware(
        self, *middleware: RequestMiddlewareBase
    ) -> "ChainMiddlewareClient":
        """
        A client sharing this client's session with extra middleware appended.

        The returned client never closes the shared session.
        """
        return ChainMiddlewareClient(
            client_session=self._client,
            logger=self._logger,
            middleware=[*(self._middleware or []), *middleware],
            raise_for_status=self._raise_for_status,
        )

    def get(
        self,
        url: StrOrURL,
        raise_for_status: bool | None = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        return self._make_request(
            method=hdrs.METH_GET,
            url=url,
            raise_for_status=raise_for_status,
            **kwargs,
        )

    def post(
        self,
        url: StrOrURL,
        raise_for_status: bool | None = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        return self._make_request(
            method=hdrs.METH_POST,
            url=url,
            raise_for_status=raise_for_status,
            **kwargs,
        )

    async def close(self) -> None:
        if self._closed is None:
            return
        await self._client.close()
        self._closed = True

    def _make_request(
        self,
        method: str,
        url: StrOrURL,
        raise_for_status: bool | None = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        chain_request = ChainRequest(
            method=method,
            url=url,
            headers=dict(kwargs.pop("headers", None) or {}),
            trace_request_ctx=kwargs.pop("trace_request_ctx", None),
            kwargs=kwargs,
        )

        if raise_for_status is None:
            raise_for_status = self._raise_for_status

        end_of_line_middleware = EndOfLineChainMiddleware(
            request_func=self._client.request,
            logger=self._logger,
            raise_for_status=raise_for_status,
        )

        chain_callback: NextChainCallbackType = end_of_line_middleware.handle

        full_middleware_chain = reversed(self._middleware or [])

        for mw in full_middleware_chain:
            chain_callback = mw.handle_gen(chain_callback)

        return ChainMiddlewareContext(
            chain_callback=chain_callback,
            chain_request=chain_request,
        )

    async def __aenter__(self) -> "ChainMiddlewareClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def __del__(self) -> None:
        if getattr(self, "_closed", None) is None:
            # in case object was not initialized (__init__ raised an exception)
            return

        if not self._closed:
            self._logger.warning("Aiohttp chain client was not closed")
