"""Send a signed request to a running worker (manual testing / smoke checks)."""

import json
import os
import sys
from typing import Optional

import httpx
import typer

from .auth import SIGNATURE_HEADER, compute_worker_signature

DEFAULT_BASE_URL = "http://localhost:3000"

app = typer.Typer(add_completion=False, no_args_is_help=True)


def build_signed_request(body: dict, shared_secret: str, header_mode: str = "Authorization") -> tuple[str, dict]:
    """Serialize `body` compactly and sign exactly those bytes."""
    payload = json.dumps(body, separators=(",", ":"), ensure_ascii=False)
    signature = compute_worker_signature(payload, shared_secret)
    headers = {"Content-Type": "application/json"}
    if header_mode == SIGNATURE_HEADER:
        headers[SIGNATURE_HEADER] = signature
    else:
        headers["Authorization"] = f"Bearer {signature}"
    return payload, headers


def send_signed_request(
    endpoint: str,
    body: dict,
    *,
    shared_secret: str,
    base_url: Optional[str] = None,
    header_mode: str = "Authorization",
    client: Optional[httpx.Client] = None,
    timeout: float = 180.0,
):
    payload, headers = build_signed_request(body, shared_secret, header_mode)
    url = f"{(base_url or DEFAULT_BASE_URL).rstrip('/')}/{endpoint.lstrip('/')}"
    if client is not None:
        response = client.post(url, content=payload.encode("utf-8"), headers=headers)
    else:
        with httpx.Client(timeout=timeout) as owned:
            response = owned.post(url, content=payload.encode("utf-8"), headers=headers)

    if "application/json" in response.headers.get("content-type", ""):
        return response.status_code, response.json()
    return response.status_code, response.text


def _run(endpoint: str, body: dict, base_url: Optional[str], header: str) -> None:
    shared_secret = os.environ.get("WORKER_SHARED_SECRET")
    if not shared_secret:
        typer.echo("WORKER_SHARED_SECRET is required.", err=True)
        raise typer.Exit(code=1)
    if header not in (SIGNATURE_HEADER, "Authorization"):
        typer.echo(f"--header must be {SIGNATURE_HEADER} or Authorization", err=True)
        raise typer.Exit(code=1)

    try:
        _status, output = send_signed_request(
            endpoint,
            body,
            shared_secret=shared_secret,
            base_url=base_url or os.environ.get("WORKER_URL") or DEFAULT_BASE_URL,
            header_mode=header,
        )
    except httpx.HTTPError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)

    if isinstance(output, str):
        sys.stdout.write(output + "\n")
    else:
        sys.stdout.write(json.dumps(output, indent=2, ensure_ascii=False) + "\n")


_BASE_URL_OPTION = typer.Option(None, "--base-url", "--baseUrl", help="Worker base URL (default: $WORKER_URL).")
_HEADER_OPTION = typer.Option("Authorization", "--header", help="X-Worker-Signature or Authorization.")


@app.command("search")
def search_cmd(
    query: str = typer.Option("epstein", "--query"),
    from_: int = typer.Option(0, "--from"),
    size: int = typer.Option(10, "--size"),
    base_url: Optional[str] = _BASE_URL_OPTION,
    header: str = _HEADER_OPTION,
) -> None:
    """POST /search"""
    _run("search", {"query": query, "from": from_, "size": size}, base_url, header)


@app.command("analyze")
def analyze_cmd(
    file_uri: str = typer.Option(..., "--file-uri", "--fileUri", "--fileuri", help="justice.gov PDF URL."),
    base_url: Optional[str] = _BASE_URL_OPTION,
    header: str = _HEADER_OPTION,
) -> None:
    """POST /analyze"""
    _run("analyze", {"fileUri": file_uri}, base_url, header)


@app.command("refresh")
def refresh_cmd(
    query: str = typer.Option("epstein", "--query"),
    batch_size: int = typer.Option(100, "--batch-size", "--batchSize"),
    base_url: Optional[str] = _BASE_URL_OPTION,
    header: str = _HEADER_OPTION,
) -> None:
    """POST /refresh"""
    _run("refresh", {"query": query, "batchSize": batch_size}, base_url, header)


if __name__ == "__main__":
    app()
