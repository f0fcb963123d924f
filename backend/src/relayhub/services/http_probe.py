"""
HttpProbe - một lần gọi HTTP tới thiết bị với timeout cứng.

Mọi request được race với ``asyncio.wait_for``; hết hạn thì request bị bỏ và
trả về ``TIMED_OUT``. Probe không bao giờ raise vì lỗi mạng: timeout, connection
refused, DNS... đều được gói thành ``ProbeResult``. Không retry.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

import httpx

from ..core.enums import ProbeOutcome
from ..core.logger import SERVER_VERSION, get_logger

logger = get_logger(__name__)

StrategyT = TypeVar("StrategyT")


@dataclass
class ProbeResult:
    """Kết quả của một probe.

    ``outcome`` cho biết thiết bị có trả lời hay không; ``ok`` chỉ đúng khi
    thiết bị trả lời với HTTP 2xx.
    """

    url: str
    outcome: ProbeOutcome
    status_code: Optional[int] = None
    body: Any = None
    error: Optional[str] = None
    elapsed: float = 0.0

    @property
    def answered(self) -> bool:
        return self.outcome == ProbeOutcome.ok

    @property
    def ok(self) -> bool:
        return self.answered and self.status_code is not None and 200 <= self.status_code < 300

    def json(self) -> Optional[dict]:
        return self.body if isinstance(self.body, dict) else None

    def describe(self) -> str:
        if self.answered:
            return f"HTTP {self.status_code}"
        return f"{self.outcome.value}: {self.error or 'no answer'}"


@dataclass
class StrategyOutcome(Generic[StrategyT]):
    """Kết quả của ``first_success``: strategy thắng + các lần thử thất bại."""

    winner: Optional[StrategyT] = None
    result: Optional[ProbeResult] = None
    failures: List[Tuple[StrategyT, ProbeResult]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.winner is not None

    @property
    def any_answered(self) -> bool:
        return any(result.answered for _, result in self.failures)


async def first_success(
    strategies: Sequence[StrategyT],
    attempt: Callable[[StrategyT], Awaitable[ProbeResult]],
) -> StrategyOutcome[StrategyT]:
    """Thử lần lượt từng strategy, strategy đầu tiên trả về 2xx thắng."""
    outcome: StrategyOutcome[StrategyT] = StrategyOutcome()
    for strategy in strategies:
        result = await attempt(strategy)
        if result.ok:
            outcome.winner = strategy
            outcome.result = result
            return outcome
        outcome.failures.append((strategy, result))
    return outcome


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpProbe:
    """HTTP client dùng chung (pooled) cho mọi giao tiếp với thiết bị.

    Args:
        default_timeout: Timeout mặc định (giây) cho mỗi probe
        user_agent: Header User-Agent gửi kèm
        transport: Transport httpx tùy chọn (test dùng ``httpx.MockTransport``)
    """

    def __init__(
        self,
        default_timeout: float = 5.0,
        user_agent: str = f"relayhub/{SERVER_VERSION}",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.default_timeout = default_timeout
        self.user_agent = user_agent
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, probe_settings, transport=None) -> "HttpProbe":
        return cls(
            default_timeout=probe_settings.default_timeout,
            user_agent=probe_settings.user_agent,
            transport=transport,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={
                    "Accept": "application/json, text/plain, */*",
                    "User-Agent": self.user_agent,
                },
                transport=self._transport,
                follow_redirects=False,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def probe(
        self,
        url: str,
        method: str = "GET",
        *,
        json: Any = None,
        form: dict | None = None,
        params: dict | None = None,
        timeout: float | None = None,
    ) -> ProbeResult:
        """Gửi một request và trả về ``ProbeResult``.

        Args:
            url: URL đầy đủ (http://host/path)
            method: GET hoặc POST
            json: Body JSON
            form: Body form-encoded
            params: Query string
            timeout: Timeout (giây), mặc định ``default_timeout``
        """
        timeout = timeout if timeout is not None else self.default_timeout
        client = await self._get_client()
        started = time.monotonic()

        try:
            response = await asyncio.wait_for(
                client.request(
                    method,
                    url,
                    json=json,
                    data=form,
                    params=params,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.debug(f"Probe {method} {url} timeout sau {timeout}s")
            return ProbeResult(
                url=url,
                outcome=ProbeOutcome.timed_out,
                error=str(e) or "timeout",
                elapsed=time.monotonic() - started,
            )
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            logger.debug(f"Probe {method} {url} lỗi mạng: {e}")
            return ProbeResult(
                url=url,
                outcome=ProbeOutcome.network_error,
                error=str(e) or e.__class__.__name__,
                elapsed=time.monotonic() - started,
            )

        return ProbeResult(
            url=url,
            outcome=ProbeOutcome.ok,
            status_code=response.status_code,
            body=_parse_body(response),
            elapsed=time.monotonic() - started,
        )

    async def get(self, url: str, timeout: float | None = None, **kwargs) -> ProbeResult:
        return await self.probe(url, "GET", timeout=timeout, **kwargs)

    async def post(self, url: str, timeout: float | None = None, **kwargs) -> ProbeResult:
        return await self.probe(url, "POST", timeout=timeout, **kwargs)
