"""
Async client for the live platform's replay ("slice") API.
"""

import asyncio
import logging
import random
from typing import Any, AsyncGenerator, Dict, Mapping, Optional

import aiohttp

from livevod_cli.exceptions import UpstreamError

log = logging.getLogger(__name__)

LIVE_ORIGIN = "https://live.bilibili.com"

# Only these cookies are forwarded; everything else in a pasted header is dropped.
REQUIRED_COOKIES = ("SESSDATA", "bili_jct", "DedeUserID", "DedeUserID__ckMd5")


def random_user_agent() -> str:
    """A current desktop Chrome/Edge user agent with a randomized major version."""
    version = random.randint(131, 141)
    return (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        f"(KHTML, like Gecko) Chrome/{version}.0.0.0 Safari/537.36 "
        f"Edg/{version}.0.0.0"
    )


def build_stream_headers(user_agent: Optional[str] = None) -> Dict[str, str]:
    """Headers the CDN expects on media requests made by ffmpeg."""
    return {
        "User-Agent": user_agent or random_user_agent(),
        "Origin": LIVE_ORIGIN,
        "Referer": f"{LIVE_ORIGIN}/",
        "Accept-Encoding": "gzip, deflate",
        "Accept": "*/*",
        "Connection": "keep-alive",
    }


DEFAULT_STREAM_HEADERS = build_stream_headers()


def parse_cookies(cookies: Mapping[str, Any] | str | None) -> Dict[str, str]:
    """
    Normalizes cookies given as a mapping or a raw ``Cookie`` header string,
    keeping only the ones the API needs and dropping empty placeholders.
    """
    if not cookies:
        return {}
    if isinstance(cookies, str):
        pairs = (part.split("=", 1) for part in cookies.split(";") if "=" in part)
        cookies = {key.strip(): value.strip() for key, value in pairs}

    parsed = {}
    for key in REQUIRED_COOKIES:
        value = cookies.get(key)
        if value is None:
            continue
        value = str(value).strip()
        if value and value not in ("undefined", "null"):
            parsed[key] = value
    return parsed


class LiveApiClient:
    """
    Async client for the replay list and stream endpoints.

    Every response carries a numeric ``code``; anything other than 0 is an
    error and is raised as UpstreamError, as are transport failures.
    """

    BASE_URL = "https://api.live.bilibili.com"
    LIST_ENDPOINT = "/xlive/web-room/v1/videoService/GetOtherSliceList"
    STREAM_ENDPOINT = "/xlive/web-room/v1/videoService/GetUserSliceStream"
    WEB_LOCATION = "444.194"
    PAGE_SIZE = 20

    def __init__(
        self,
        cookies: Mapping[str, Any] | str | None = None,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
    ):
        self.cookies = parse_cookies(cookies)
        self.timeout = timeout
        self.user_agent = user_agent or random_user_agent()
        self._session: Optional[aiohttp.ClientSession] = None

        if self.cookies:
            log.debug(f"Using cookies: {', '.join(self.cookies)}")
        else:
            log.debug("No cookies configured; only public replays are reachable.")

    @property
    def stream_headers(self) -> Dict[str, str]:
        """Media request headers sharing this client's user agent."""
        return build_stream_headers(self.user_agent)

    async def __aenter__(self) -> "LiveApiClient":
        await self._initialize_session()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _initialize_session(self) -> None:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            headers = {
                "User-Agent": self.user_agent,
                "Origin": LIVE_ORIGIN,
                "Referer": f"{LIVE_ORIGIN}/",
            }
            if self.cookies:
                headers["Cookie"] = "; ".join(
                    f"{key}={value}" for key, value in self.cookies.items()
                )
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout, connect=15),
            )

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def api_call(self, endpoint: str, **params: Any) -> Dict[str, Any]:
        """
        Performs a GET against the API and returns the decoded payload.

        Raises:
            UpstreamError: On transport failures, non-JSON bodies or a non-zero
            API code.
        """
        await self._initialize_session()
        log.debug(f"GET {endpoint} {params}")

        try:
            async with self._session.get(self.BASE_URL + endpoint, params=params) as r:
                r.raise_for_status()
                payload = await r.json(content_type=None)
        except aiohttp.ClientResponseError as e:
            raise UpstreamError(f"HTTP {e.status} from {endpoint}: {e.message}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError(
                f"Request to {endpoint} failed: {e or type(e).__name__}"
            ) from e
        except ValueError as e:
            raise UpstreamError(f"Malformed response from {endpoint}: {e}") from e

        if not isinstance(payload, dict):
            raise UpstreamError(f"Unexpected response from {endpoint}: {payload!r}")

        code = payload.get("code")
        if code != 0:
            message = payload.get("message") or payload.get("msg") or "unknown error"
            raise UpstreamError(f"API error {code} from {endpoint}: {message}")
        return payload

    async def fetch_list(self, owner_id: str, page: int = 1) -> Dict[str, Any]:
        """Fetches one page of an account's replay list (last three months)."""
        payload = await self.api_call(
            self.LIST_ENDPOINT,
            live_uid=owner_id,
            time_range=3,
            page=page,
            page_size=self.PAGE_SIZE,
            web_location=self.WEB_LOCATION,
        )
        total = ((payload.get("data") or {}).get("pagination") or {}).get("total", 0)
        log.debug(f"Replay list of {owner_id}: page {page}, {total} total")
        return payload

    async def iter_replays(
        self, owner_id: str, max_pages: Optional[int] = None
    ) -> AsyncGenerator[Dict[str, Any], None]:
        """Yields every replay item of an account, page by page."""
        page = 1
        while True:
            payload = await self.fetch_list(owner_id, page=page)
            data = payload.get("data") or {}
            items = data.get("replay_info") or []
            if not items:
                break

            for item in items:
                yield item

            total = (data.get("pagination") or {}).get("total", 0)
            if page * self.PAGE_SIZE >= total:
                break
            if max_pages is not None and page >= max_pages:
                break
            page += 1

    async def fetch_stream_info(
        self, live_key: str, start_time: int, end_time: int, owner_id: str
    ) -> Dict[str, Any]:
        """
        Resolves the time-bounded stream URL of one replay.

        Returns:
            ``{"stream_url": str, "raw": dict}``; the URL is empty when the
            platform lists no stream.
        """
        payload = await self.api_call(
            self.STREAM_ENDPOINT,
            live_key=live_key,
            start_time=start_time,
            end_time=end_time,
            live_uid=owner_id,
            web_location=self.WEB_LOCATION,
        )
        streams = (payload.get("data") or {}).get("list") or []
        stream_url = ""
        if streams and isinstance(streams[0], dict):
            stream_url = str(streams[0].get("stream") or "").strip()
        log.debug(f"Stream info resolved for {live_key}")
        return {"stream_url": stream_url, "raw": payload}
