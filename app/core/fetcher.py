from __future__ import annotations
import html as html_lib
import re
from dataclasses import dataclass, field
from typing import Optional
import httpx
from app.core.config import settings
from app.core.exceptions import CaptureError
from app.schemas.collaborators import PageCapture

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_INVISIBLE_RE = re.compile(r"<(script|style|noscript|template)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def extract_title(markup: str) -> str:
    match = _TITLE_RE.search(markup)
    return html_lib.unescape(match.group(1)).strip() if match else ""


def visible_text(markup: str) -> str:
    """Text a visitor would read: markup, scripts, styles and comments removed."""
    text = _COMMENT_RE.sub(" ", markup)
    text = _INVISIBLE_RE.sub(" ", text)
    text = _TAG_RE.sub("\n", text)
    text = html_lib.unescape(text)
    text = _SPACE_RE.sub(" ", text)
    lines = [line.strip() for line in text.split("\n")]
    return _BLANK_LINES_RE.sub("\n", "\n".join(line for line in lines if line)).strip()


@dataclass
class HttpPageSource:
    """Captures pages over plain HTTP. Pages that render client-side need a browser-backed source."""
    timeout: float = settings.fetch_timeout_seconds
    user_agent: str = settings.user_agent
    transport: Optional[httpx.AsyncBaseTransport] = field(default=None, repr=False)

    def _headers(self) -> dict:
        return {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml",
        }

    async def capture(self, url: str) -> PageCapture:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                r = await client.get(url, headers=self._headers())
        except httpx.TimeoutException as e:
            raise CaptureError(f"Timeout fetching {url}: {e}", url=url) from e
        except httpx.HTTPError as e:
            raise CaptureError(f"Network error fetching {url}: {e}", url=url) from e

        if r.status_code >= 400:
            message = f"HTTP {r.status_code} {r.reason_phrase} fetching {url}"
            if r.status_code == 403:
                message += " (access blocked)"
            raise CaptureError(
                message,
                status_code=r.status_code,
                url=url,
            )
        markup = r.text
        return PageCapture(
            url=str(r.url),
            title=extract_title(markup),
            html=markup,
            snapshot=visible_text(markup),
            status_code=r.status_code,
        )
