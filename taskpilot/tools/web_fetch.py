"""Web fetch tool for taskpilot.

Streams the response body with httpx and checks the cancellation token
between chunks, so a slow download stops promptly when the user aborts.
"""

from __future__ import annotations

import re
from typing import List

import httpx
from pydantic import BaseModel, Field, field_validator

from taskpilot.config import defaults
from taskpilot.tools.base import (
    ToolCancelledError,
    ToolContext,
    ToolError,
    ToolErrorCode,
    ToolInitContext,
    ToolResult,
    ToolSpec,
    define,
)

_SCRIPT_RE = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"[ \t]+")
_BLANK_RE = re.compile(r"\n\s*\n+")


def html_to_text(html: str) -> str:
    """Rough HTML-to-text: drop scripts/styles and tags, squeeze whitespace."""
    text = _SCRIPT_RE.sub(" ", html)
    text = _TAG_RE.sub(" ", text)
    text = _WS_RE.sub(" ", text)
    return _BLANK_RE.sub("\n\n", text).strip()


class WebFetchParams(BaseModel):
    url: str = Field(description="http(s) URL to fetch")
    raw: bool = Field(default=False, description="Return HTML as-is instead of extracted text")

    @field_validator("url")
    @classmethod
    def http_only(cls, v: str) -> str:
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError("only http and https URLs are supported")
        return v


def _init(init: ToolInitContext) -> ToolSpec:
    timeout = init.config.tools.fetch_timeout_s

    def execute(params: WebFetchParams, ctx: ToolContext) -> ToolResult:
        parts: List[bytes] = []
        received = 0
        truncated = False
        try:
            with httpx.Client(
                timeout=httpx.Timeout(timeout, connect=10.0),
                follow_redirects=True,
                headers={"User-Agent": "Mozilla/5.0 (compatible; taskpilot/0.3)"},
            ) as client:
                with client.stream("GET", params.url) as resp:
                    if resp.status_code >= 400:
                        raise ToolError(
                            f"HTTP {resp.status_code} fetching {params.url}", ToolErrorCode.IO_ERROR
                        )
                    content_type = resp.headers.get("content-type", "")
                    for chunk in resp.iter_bytes():
                        if ctx.cancelled:
                            raise ToolCancelledError(f"Fetch cancelled: {params.url}")
                        parts.append(chunk)
                        received += len(chunk)
                        if received >= defaults.MAX_FETCH_BYTES:
                            truncated = True
                            break
        except httpx.TimeoutException as e:
            raise ToolError(f"Timed out fetching {params.url}", ToolErrorCode.TIMEOUT) from e
        except httpx.HTTPError as e:
            raise ToolError(f"Fetch failed: {type(e).__name__}", ToolErrorCode.IO_ERROR) from e

        body = b"".join(parts)[: defaults.MAX_FETCH_BYTES].decode("utf-8", errors="replace")
        if "html" in content_type and not params.raw:
            body = html_to_text(body)
        if truncated:
            body += f"\n\n(truncated at {defaults.MAX_FETCH_BYTES} bytes)"

        return ToolResult(
            title=params.url,
            output=body or "(empty response)",
            metadata={"url": params.url, "bytes": received, "content_type": content_type, "truncated": truncated},
        )

    return ToolSpec(
        description="Fetch a web page or file over HTTP(S) and return its text content.",
        parameters=WebFetchParams,
        execute=execute,
    )


WEB_FETCH = define("web_fetch", _init)
