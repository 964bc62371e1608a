"""Download uploaded export files from blob storage.

Bodies are streamed and abandoned once they pass the configured size limit.
`data:` URLs are decoded locally; uploads fall back to them when blob
storage is not configured.
"""

import base64
import binascii
import logging
from urllib.parse import unquote_to_bytes

import httpx

from promptvault.errors import BlobFetchError, TransientIOError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 425, 429}


class BlobFetcher:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        max_bytes: int = 50 * 1024 * 1024,
        timeout: float = 60.0,
    ) -> None:
        self._client = client
        self._max_bytes = max_bytes
        self._timeout = timeout

    async def fetch(self, url: str) -> bytes:
        """Return the blob's bytes.

        Raises TransientIOError for failures worth retrying and
        BlobFetchError for everything else.
        """
        if url.lower().startswith("data:"):
            return self._decode_data_url(url)

        try:
            async with self._client.stream("GET", url, timeout=self._timeout) as response:
                status = response.status_code
                if status >= 500 or status in _RETRYABLE_STATUS:
                    raise TransientIOError(
                        f"Failed to download file: HTTP {status} {response.reason_phrase}"
                    )
                if status >= 400:
                    raise BlobFetchError(
                        f"Failed to download file: HTTP {status} {response.reason_phrase}"
                    )
                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self._max_bytes:
                    raise self._too_large()

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self._max_bytes:
                        raise self._too_large()
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            raise BlobFetchError(f"Cannot download file from {url!r}: {e}") from e
        except httpx.TimeoutException as e:
            raise TransientIOError(f"Timed out downloading file: {e}") from e
        except httpx.TransportError as e:
            raise TransientIOError(f"Failed to download file: {e}") from e

        logger.debug("Fetched %d bytes from blob storage", len(body))
        return bytes(body)

    def _decode_data_url(self, url: str) -> bytes:
        header, sep, data = url[len("data:"):].partition(",")
        if not sep:
            raise BlobFetchError("Malformed data URL")
        try:
            if header.lower().endswith(";base64"):
                body = base64.b64decode(data, validate=False)
            else:
                body = unquote_to_bytes(data)
        except (binascii.Error, ValueError) as e:
            raise BlobFetchError(f"Malformed data URL: {e}") from e
        if len(body) > self._max_bytes:
            raise self._too_large()
        return body

    def _too_large(self) -> BlobFetchError:
        return BlobFetchError(f"File exceeds the {self._max_bytes} byte import limit")
