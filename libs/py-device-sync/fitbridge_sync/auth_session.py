"""
Interactive OAuth authorization sessions.

A session opens the provider's authorization page and waits for the
redirect. It resolves to exactly one AuthorizationResult: success with a
code, cancelled (user denied consent or ``cancel()`` was called) or error.
"""

import asyncio
import logging
import webbrowser
from abc import ABC, abstractmethod
from collections.abc import Callable

import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import HTMLResponse

from .provider_types import AuthorizationResult, AuthorizationStatus

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/oauth/callback"
CANCEL_PATH = "/oauth/cancel"

_PAGE = "<html><body><h3>{title}</h3><p>{message}</p></body></html>"


class AuthorizationSession(ABC):
    """Interactive session that yields one authorization outcome."""

    @property
    @abstractmethod
    def redirect_uri(self) -> str:
        """Redirect URI registered with the provider."""

    @abstractmethod
    async def authorize(self, url: str, state: str) -> AuthorizationResult:
        """Open ``url`` and wait for the redirect carrying ``state``."""

    @abstractmethod
    def cancel(self) -> None:
        """Explicit user cancel; resolves a pending ``authorize`` as cancelled."""


class LoopbackAuthorizationSession(AuthorizationSession):
    """
    Receives the redirect on a local FastAPI app served by uvicorn.

    Args:
        host: Interface to bind
        port: Port to bind
        public_url: Public base URL (e.g. an ngrok tunnel) forwarding to the
            local server, for providers that require an HTTPS redirect
        open_browser: Open the authorization URL with ``webbrowser``
        on_url: Called with the authorization URL once the session is waiting
        timeout: Seconds to wait before resolving as an error
        serve: Start uvicorn; disable to drive ``app`` in-process
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8765,
        public_url: str | None = None,
        open_browser: bool = True,
        on_url: Callable[[str], None] | None = None,
        timeout: float = 300.0,
        serve: bool = True,
    ):
        self.host = host
        self.port = port
        self.public_url = public_url.rstrip("/") if public_url else None
        self.open_browser = open_browser
        self.on_url = on_url
        self.timeout = timeout
        self.serve = serve

        self._future: asyncio.Future[AuthorizationResult] | None = None
        self._expected_state: str | None = None
        self._app = self._create_app()

    @property
    def redirect_uri(self) -> str:
        base = self.public_url or f"http://{self.host}:{self.port}"
        return f"{base}{CALLBACK_PATH}"

    @property
    def app(self) -> FastAPI:
        return self._app

    @property
    def pending(self) -> bool:
        return self._future is not None and not self._future.done()

    def _resolve(self, result: AuthorizationResult) -> bool:
        if not self.pending:
            return False
        self._future.set_result(result)
        return True

    def _create_app(self) -> FastAPI:
        app = FastAPI(title="fitbridge OAuth callback", docs_url=None, redoc_url=None)

        @app.get(CALLBACK_PATH, response_class=HTMLResponse)
        async def oauth_callback(
            code: str | None = Query(None),
            state: str | None = Query(None),
            error: str | None = Query(None),
            error_description: str | None = Query(None),
        ):
            if not self.pending:
                return HTMLResponse(
                    _PAGE.format(title="No authorization in progress", message="Close this window."),
                    status_code=409,
                )

            if error:
                status = (
                    AuthorizationStatus.CANCELLED
                    if error == "access_denied"
                    else AuthorizationStatus.ERROR
                )
                result = AuthorizationResult(
                    status=status, state=state, error=error_description or error
                )
            elif state != self._expected_state:
                logger.warning("OAuth callback state mismatch")
                result = AuthorizationResult(
                    status=AuthorizationStatus.ERROR, state=state, error="State mismatch"
                )
            elif not code:
                result = AuthorizationResult(
                    status=AuthorizationStatus.ERROR, state=state, error="Missing authorization code"
                )
            else:
                result = AuthorizationResult(
                    status=AuthorizationStatus.SUCCESS, code=code, state=state
                )

            self._resolve(result)
            if result.status == AuthorizationStatus.SUCCESS:
                return _PAGE.format(
                    title="Authorization complete", message="You can close this window."
                )
            return HTMLResponse(
                _PAGE.format(title="Authorization not completed", message=result.error or ""),
                status_code=400,
            )

        @app.get(CANCEL_PATH, response_class=HTMLResponse)
        async def oauth_cancel():
            self.cancel()
            return _PAGE.format(title="Authorization cancelled", message="You can close this window.")

        return app

    def cancel(self) -> None:
        if self._resolve(
            AuthorizationResult(
                status=AuthorizationStatus.CANCELLED, error="Authorization was cancelled by user"
            )
        ):
            logger.info("Authorization cancelled")

    async def authorize(self, url: str, state: str) -> AuthorizationResult:
        if self.pending:
            raise RuntimeError("An authorization is already in progress")

        self._future = asyncio.get_running_loop().create_future()
        self._expected_state = state

        server = None
        server_task = None
        if self.serve:
            server = uvicorn.Server(
                uvicorn.Config(self._app, host=self.host, port=self.port, log_level="warning")
            )
            server_task = asyncio.create_task(server.serve())

        try:
            if self.on_url:
                self.on_url(url)
            if self.open_browser and not await asyncio.to_thread(webbrowser.open, url):
                logger.warning("Could not open a browser; open the authorization URL manually")

            try:
                return await asyncio.wait_for(asyncio.shield(self._future), timeout=self.timeout)
            except TimeoutError:
                logger.warning("Authorization timed out after %ss", self.timeout)
                return AuthorizationResult(
                    status=AuthorizationStatus.ERROR, error="Authorization timed out"
                )
        finally:
            if self._future is not None and not self._future.done():
                self._future.cancel()
            self._future = None
            self._expected_state = None
            if server is not None:
                server.should_exit = True
                await server_task
