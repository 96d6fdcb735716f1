"""freee API access: OAuth2 authorization code flow, token storage and requests."""

from __future__ import annotations

import json
import logging
import os
import sys
import time
import uuid
import webbrowser
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlencode, urljoin, urlparse

import requests

from ffbox.errors import UnexpectedResponseError

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.freee.co.jp"
AUTH_ENDPOINT = "https://accounts.secure.freee.co.jp/public_api/authorize"
TOKEN_ENDPOINT = "https://accounts.secure.freee.co.jp/public_api/token"
DEFAULT_SCOPE = "read write"


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: str
    expires_at: float  # epoch seconds
    token_type: str = "Bearer"

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> "OAuthTokens":
        expires_in = payload.get("expires_in", 0)
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token", ""),
            expires_at=time.time() + expires_in - 30,  # refresh a little early
            token_type=payload.get("token_type", "Bearer"),
        )

    def is_expired(self) -> bool:
        return time.time() >= self.expires_at


@dataclass
class AppConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    token_file: Path
    callback_port: int = 3485
    company_id: Optional[int] = None
    scope: str = DEFAULT_SCOPE
    base_url: str = API_BASE_URL
    debug: bool = False
    request_timeout: float = 60.0


class TokenStore:
    """Reads and writes OAuth tokens as JSON in ``path``."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Optional[OAuthTokens]:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text())
        except json.JSONDecodeError as exc:
            raise SystemExit(f"Invalid token file {self.path}: {exc}") from exc
        if not payload.get("access_token"):
            return None
        return OAuthTokens(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token", ""),
            expires_at=float(payload.get("expires_at", 0.0)),
            token_type=payload.get("token_type", "Bearer"),
        )

    def save(self, tokens: OAuthTokens) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "access_token": tokens.access_token,
            "refresh_token": tokens.refresh_token,
            "expires_at": tokens.expires_at,
            "token_type": tokens.token_type,
        }
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w") as fh:
            fh.write(json.dumps(payload, indent=2) + "\n")


def build_auth_url(config: AppConfig, state: str) -> str:
    params = {
        "response_type": "code",
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "scope": config.scope,
        "state": state,
    }
    return f"{AUTH_ENDPOINT}?{urlencode(params)}"


def exchange_code_for_token(config: AppConfig, code: str) -> OAuthTokens:
    payload = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": config.redirect_uri,
    }
    return _token_request(config, payload)


def refresh_access_token(config: AppConfig, tokens: OAuthTokens) -> OAuthTokens:
    payload = {
        "grant_type": "refresh_token",
        "refresh_token": tokens.refresh_token,
    }
    return _token_request(config, payload)


def _token_request(config: AppConfig, payload: Dict[str, Any]) -> OAuthTokens:
    form = {**payload, "client_id": config.client_id, "client_secret": config.client_secret}
    headers = {"Content-Type": "application/x-www-form-urlencoded"}
    resp = requests.post(TOKEN_ENDPOINT, data=form, headers=headers, timeout=30)

    if resp.status_code >= 400:
        debug_lines: List[str] = [
            f"grant_type={payload.get('grant_type')}, redirect_uri={payload.get('redirect_uri')}",
            f"status={resp.status_code} {resp.reason}",
            f"content-type: {resp.headers.get('Content-Type')}",
            f"body: {resp.text}",
        ]
        detail = " | ".join(debug_lines)
        raise SystemExit(
            "Token request failed. Check credentials and redirect URI. "
            + (detail if config.debug else f"Status {resp.status_code}. Enable --debug for details.")
        )

    logger.debug("Token request succeeded: status=%s", resp.status_code)
    return OAuthTokens.from_response(resp.json())


class _AuthHandler(BaseHTTPRequestHandler):
    server: HTTPServer  # type: ignore[assignment]

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        params = parse_qs(parsed.query)
        code = params.get("code", [None])[0]
        state = params.get("state", [None])[0]
        self.server.auth_code = code  # type: ignore[attr-defined]
        self.server.auth_state = state  # type: ignore[attr-defined]
        msg = "Authorization received. You may close this window." if code else "Authorization failed."
        self.send_response(200)
        self.end_headers()
        self.wfile.write(msg.encode())

    def log_message(self, fmt: str, *args: Any) -> None:  # silence default logging
        return


def run_local_server(port: int) -> Tuple[Optional[str], Optional[str]]:
    server = HTTPServer(("127.0.0.1", port), _AuthHandler)
    server.auth_code = None  # type: ignore[attr-defined]
    server.auth_state = None  # type: ignore[attr-defined]
    try:
        server.handle_request()
    finally:
        server.server_close()
    return server.auth_code, server.auth_state  # type: ignore[attr-defined]


def start_auth_flow(config: AppConfig, port: int, open_browser: bool) -> OAuthTokens:
    state = uuid.uuid4().hex
    auth_url = build_auth_url(config, state)
    if open_browser:
        webbrowser.open(auth_url)
    else:
        print(f"Open this URL in your browser:\n{auth_url}\n", file=sys.stderr)
    print(f"Listening on http://127.0.0.1:{port} for the callback...", file=sys.stderr)
    code, returned_state = run_local_server(port)
    if not code:
        raise SystemExit("No authorization code received.")
    if returned_state and returned_state != state:
        raise SystemExit("State mismatch during OAuth flow.")
    return exchange_code_for_token(config, code)


def ensure_tokens(config: AppConfig, store: TokenStore) -> OAuthTokens:
    tokens = store.load()
    if not tokens:
        raise SystemExit("No tokens found. Run `ffbox auth` first.")
    if tokens.is_expired():
        tokens = refresh_access_token(config, tokens)
        store.save(tokens)
    return tokens


def api_request(
    method: str,
    config: AppConfig,
    store: TokenStore,
    path: str,
    *,
    params: Optional[Dict[str, Any]] = None,
    data: Optional[bytes] = None,
    headers: Optional[Dict[str, str]] = None,
    allow_refresh: bool = True,
) -> requests.Response:
    tokens = ensure_tokens(config, store)
    url = urljoin(config.base_url + "/", path.lstrip("/"))
    logger.debug(
        "HTTP %s %s params=%s body_bytes=%s timeout=%s",
        method,
        url,
        params,
        len(data) if data is not None else 0,
        config.request_timeout,
    )
    req_headers = {
        "Authorization": f"Bearer {tokens.access_token}",
        "Accept": "application/json",
    }
    if headers:
        req_headers.update(headers)
    resp = requests.request(
        method,
        url,
        params=params,
        data=data,
        headers=req_headers,
        timeout=config.request_timeout,
    )

    if resp.status_code == 401 and allow_refresh:
        tokens = refresh_access_token(config, tokens)
        store.save(tokens)
        req_headers["Authorization"] = f"Bearer {tokens.access_token}"
        resp = requests.request(
            method,
            url,
            params=params,
            data=data,
            headers=req_headers,
            timeout=config.request_timeout,
        )

    if resp.status_code == 429:
        retry_after = int(resp.headers.get("Retry-After", "1"))
        logger.warning("Rate limited. Retrying after %ss...", retry_after)
        time.sleep(retry_after)
        return api_request(
            method,
            config,
            store,
            path,
            params=params,
            data=data,
            headers=headers,
            allow_refresh=False,
        )

    if resp.status_code >= 400:
        raise SystemExit(f"API error {resp.status_code}: {resp.text}. Path={path}, params={params}")
    return resp


def _expect(resp: requests.Response, status_code: int, context: str = "") -> Dict[str, Any]:
    if resp.status_code != status_code:
        raise UnexpectedResponseError(resp.status_code, resp.reason, context)
    return resp.json()


def get_companies(config: AppConfig, store: TokenStore) -> Optional[List[Dict[str, Any]]]:
    resp = api_request("GET", config, store, "/api/1/companies")
    return _expect(resp, 200).get("companies")


def get_receipts(
    config: AppConfig,
    store: TokenStore,
    company_id: int,
    *,
    start_date: str,
    end_date: str,
    limit: int,
) -> Optional[List[Dict[str, Any]]]:
    params = {
        "company_id": company_id,
        "start_date": start_date,
        "end_date": end_date,
        "limit": limit,
    }
    resp = api_request("GET", config, store, "/api/1/receipts", params=params)
    return _expect(resp, 200).get("receipts")


def get_receipt(
    config: AppConfig, store: TokenStore, company_id: int, receipt_id: int
) -> Optional[Dict[str, Any]]:
    resp = api_request(
        "GET", config, store, f"/api/1/receipts/{receipt_id}", params={"company_id": company_id}
    )
    return _expect(resp, 200, f"receipt ID {receipt_id}").get("receipt")


def create_receipt(config: AppConfig, store: TokenStore, body: bytes, content_type: str) -> Dict[str, Any]:
    resp = api_request(
        "POST",
        config,
        store,
        "/api/1/receipts",
        data=body,
        headers={"Content-Type": content_type},
    )
    return _expect(resp, 201).get("receipt", {})
