"""
In-page network calls against justice.gov.

Every request to the target runs through `page.evaluate(...)` so it carries the
page's live cookies and the JS-derived Akamai challenge state. Copying cookies
into an out-of-browser client loses the latter and gets 403s.
"""

from dataclasses import dataclass
from typing import Any, Union

BODY_EXCERPT_CHARS = 500
ERROR_EXCERPT_CHARS = 300

JSON_FETCH_SCRIPT = """async ({url, excerpt}) => {
  try {
    const resp = await fetch(url, {
      method: 'GET',
      headers: {
        'Accept': 'application/json, text/javascript, */*; q=0.01',
        'X-Requested-With': 'XMLHttpRequest',
      },
      credentials: 'same-origin',
    });
    if (!resp.ok) {
      const body = await resp.text();
      return { error: true, status: resp.status, statusText: resp.statusText, body: body.slice(0, excerpt) };
    }
    const json = await resp.json();
    return { error: false, data: json };
  } catch (e) {
    return { error: true, status: 0, statusText: 'FETCH_ERROR', body: String(e).slice(0, excerpt) };
  }
}"""

# Binary can't cross the evaluate boundary; ship it back as base64.
BINARY_FETCH_SCRIPT = """async ({url, accept}) => {
  try {
    const resp = await fetch(url, {
      headers: { 'Accept': accept },
      credentials: 'same-origin',
    });
    if (!resp.ok) {
      return { error: true, status: resp.status, statusText: resp.statusText, body: '' };
    }
    const bytes = new Uint8Array(await resp.arrayBuffer());
    let binary = '';
    const chunk = 0x8000;
    for (let i = 0; i < bytes.length; i += chunk) {
      binary += String.fromCharCode.apply(null, bytes.subarray(i, i + chunk));
    }
    return { error: false, data: btoa(binary) };
  } catch (e) {
    return { error: true, status: 0, statusText: 'FETCH_ERROR', body: String(e).slice(0, 500) };
  }
}"""


@dataclass(frozen=True)
class FetchSuccess:
    data: Any
    error: bool = False


@dataclass(frozen=True)
class FetchFailure:
    status: int
    status_text: str = ""
    body: str = ""
    error: bool = True

    def describe(self, prefix: str, *, include_body: bool = True) -> str:
        message = f"{prefix} {self.status} {self.status_text}".rstrip()
        if include_body and self.body:
            message += f": {self.body[:ERROR_EXCERPT_CHARS]}"
        return message


FetchResult = Union[FetchSuccess, FetchFailure]


def parse_evaluate_result(raw: Any) -> FetchResult:
    """Turn the `{error: bool, ...}` object returned from the page into a typed result."""
    if not isinstance(raw, dict):
        return FetchFailure(status=0, status_text="Malformed evaluate result", body=str(raw)[:BODY_EXCERPT_CHARS])

    if raw.get("error") is False:
        return FetchSuccess(data=raw.get("data"))

    try:
        status = int(raw.get("status") or 0)
    except (TypeError, ValueError):
        status = 0
    return FetchFailure(
        status=status,
        status_text=str(raw.get("statusText") or ""),
        body=str(raw.get("body") or "")[:BODY_EXCERPT_CHARS],
    )


async def fetch_json_in_page(page, url: str) -> FetchResult:  # noqa: ANN001
    raw = await page.evaluate(JSON_FETCH_SCRIPT, {"url": str(url), "excerpt": BODY_EXCERPT_CHARS})
    return parse_evaluate_result(raw)


async def fetch_base64_in_page(page, url: str, *, accept: str = "application/pdf") -> FetchResult:  # noqa: ANN001
    raw = await page.evaluate(BINARY_FETCH_SCRIPT, {"url": str(url), "accept": accept})
    return parse_evaluate_result(raw)


async def close_quietly(resource) -> None:  # noqa: ANN001
    if resource is None:
        return
    try:
        await resource.close()
    except Exception:
        pass
