"""HTTP transport used by the downloader.

The downloader only needs ``get(url) -> HttpResponse``; anything with that
shape can be injected in place of :class:`HttpTransport`.
"""

import logging
from dataclasses import dataclass

import httpx

from pluginsync import __version__

from .errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"pluginsync/{__version__}"


@dataclass(frozen=True)
class HttpResponse:
    """Status, body and reason phrase of one completed request."""

    status_code: int
    body: bytes = b""
    reason: str = ""


class HttpTransport:
    """Blocking GET over a shared ``httpx.Client``.

    Redirects are followed and proxy settings are read from the
    environment (``HTTP_PROXY``, ``HTTPS_PROXY``, ``NO_PROXY``).
    """

    def __init__(
        self,
        timeout: float = 60.0,
        user_agent: str = DEFAULT_USER_AGENT,
        client: httpx.Client | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            trust_env=True,
            headers={"User-Agent": user_agent},
        )

    def get(self, url: str) -> HttpResponse:
        """Fetch ``url``; any status code is returned, not raised.

        Raises:
            TransportError: On connection, timeout or protocol failures.
        """
        try:
            resp = self._client.get(url)
        except httpx.RequestError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e
        logger.debug(f"GET {url} -> {resp.status_code}")
        return HttpResponse(
            status_code=resp.status_code,
            body=resp.content,
            reason=resp.reason_phrase,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
