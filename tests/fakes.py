"""
tests/fakes.py

In-process HTTP doubles for the source and target systems.

`FakeTransport` is a `requests` transport adapter: mounted on a real
`requests.Session`, it records every prepared request and answers from a
handler, so connectors run their real request/response code paths without
any network access.
"""

from __future__ import annotations

import json
import re
import threading
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs, urlparse

import requests
from requests.adapters import BaseAdapter
from requests.cookies import cookiejar_from_dict
from requests.structures import CaseInsensitiveDict

from crm_sync.auth.token_cache import AccessToken, SourceSession, TokenCache
from crm_sync.config import GalaxySettings, HTTPSettings, ZohoSettings

Outcome = requests.Response | BaseException
Handler = Callable[[requests.PreparedRequest], Outcome]

GALAXY_BASE = "http://galaxy.test"
CUSTOMERS_PATH = "/api/glx/views/Customer/custom/zh_Customers_fin"
AFFILIATES_PATH = "/api/glx/views/Customer/custom/ZH_AFFILIATE"

_FILTER_RE = re.compile(r"\?filters=\[\{(?P<field>[^:]+):\[(?P<value>[^,\]]+),(?P<op>\w+)\]\}\]$")


def make_response(
    status: int = 200,
    *,
    json_body: Any = None,
    text: str | None = None,
    headers: dict[str, str] | None = None,
    cookies: dict[str, str] | None = None,
    reason: str | None = None,
) -> requests.Response:
    """Build a canned response; `json_body` wins over `text`."""
    response = requests.Response()
    response.status_code = status
    response.reason = reason or ("OK" if status < 400 else "Error")
    response.encoding = "utf-8"
    response.headers = CaseInsensitiveDict(headers or {})
    if json_body is not None:
        response._content = json.dumps(json_body).encode("utf-8")
        response.headers.setdefault("Content-Type", "application/json")
    else:
        response._content = (text or "").encode("utf-8")
    response.cookies = cookiejar_from_dict(cookies or {})
    return response


def request_json(request: requests.PreparedRequest) -> Any:
    body = request.body
    if body is None:
        return None
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    return json.loads(body)


def query_params(request: requests.PreparedRequest) -> dict[str, str]:
    parsed = parse_qs(urlparse(request.url or "").query)
    return {key: values[-1] for key, values in parsed.items()}


class FakeTransport(BaseAdapter):
    """
    Records prepared requests; answers from a handler or a queue of outcomes.
    """

    def __init__(self, handler: Handler | None = None) -> None:
        super().__init__()
        self._handler = handler
        self._queued: list[Outcome] = []
        self._lock = threading.Lock()
        self.requests: list[requests.PreparedRequest] = []
        self.timeouts: list[Any] = []

    def queue(self, *outcomes: Outcome) -> "FakeTransport":
        self._queued.extend(outcomes)
        return self

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        with self._lock:
            self.requests.append(request)
            self.timeouts.append(timeout)
            if self._handler is None:
                if not self._queued:
                    raise AssertionError(f"Unexpected request: {request.method} {request.url}")
                outcome = self._queued.pop(0)
            else:
                outcome = None
        if outcome is None:
            outcome = self._handler(request)
        if isinstance(outcome, BaseException):
            raise outcome
        outcome.request = request
        outcome.url = request.url
        return outcome

    def close(self) -> None:
        pass

    @property
    def urls(self) -> list[str]:
        return [request.url or "" for request in self.requests]


def mounted_session(transport: FakeTransport) -> requests.Session:
    session = requests.Session()
    session.trust_env = False
    session.mount("http://", transport)
    session.mount("https://", transport)
    return session


def galaxy_settings(**overrides: Any) -> GalaxySettings:
    values: dict[str, Any] = {
        "base_url": GALAXY_BASE,
        "username": "svc",
        "password": "secret",
        "session_file": "./.session.test.json",
        "customers_path": CUSTOMERS_PATH,
        "affiliates_path": AFFILIATES_PATH,
    }
    values.update(overrides)
    return GalaxySettings(**values)


def zoho_settings(**overrides: Any) -> ZohoSettings:
    values: dict[str, Any] = {
        "client_id": "cid",
        "client_secret": "csecret",
        "refresh_token": "rtoken",
        "dc": "eu",
    }
    values.update(overrides)
    return ZohoSettings(**values)


def http_settings(**overrides: Any) -> HTTPSettings:
    values: dict[str, Any] = {
        "timeout_seconds": 8.0,
        "affiliate_timeout_seconds": 20.0,
        "retry_backoff_seconds": 0.0,
        "token_refresh_margin_seconds": 10.0,
    }
    values.update(overrides)
    return HTTPSettings(**values)


def static_token_cache(token: str = "T0", session_id: str = "S0") -> TokenCache:
    """Token cache whose providers never touch the network."""
    return TokenCache(
        token_provider=lambda: AccessToken(value=token, expires_at=float("inf")),
        session_authenticator=lambda ss_pid: SourceSession(session_id=session_id, ss_pid=ss_pid),
    )


class FakeGalaxy:
    """
    Stateful Galaxy double: `/auth` plus the customer and affiliate views,
    honoring the raw filter grammar.
    """

    def __init__(
        self,
        *,
        customers: list[dict[str, Any]] | None = None,
        affiliates: list[dict[str, Any]] | None = None,
    ) -> None:
        self.customers = list(customers or [])
        self.affiliates = list(affiliates or [])
        self.auth_calls = 0
        self.auth_status = 200
        self.reject_data_requests = 0
        self.data_outcomes: dict[str, list[Outcome]] = {}
        self.data_urls: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, request: requests.PreparedRequest) -> Outcome:
        url = request.url or ""
        path = urlparse(url).path
        if path.endswith("/auth"):
            return self._auth()

        with self._lock:
            self.data_urls.append(url)
            if self.reject_data_requests > 0:
                self.reject_data_requests -= 1
                return make_response(401, json_body={"ResponseStatus": {"Message": "Not authenticated"}})
            queued = self.data_outcomes.get(path)
            if queued:
                return queued.pop(0)

        if path == AFFILIATES_PATH:
            rows = self.affiliates
        elif path == CUSTOMERS_PATH:
            rows = self.customers
        else:
            return make_response(404, text="not found")
        return make_response(200, json_body={"Items": _apply_filter(rows, url)})

    def _auth(self) -> Outcome:
        with self._lock:
            self.auth_calls += 1
            calls = self.auth_calls
        if self.auth_status != 200:
            return make_response(
                self.auth_status,
                json_body={"ResponseStatus": {"Message": "Invalid UserName or Password"}},
            )
        return make_response(200, json_body={"SessionId": f"S{calls}"}, cookies={"ss-pid": "PID1"})


def _apply_filter(rows: list[dict[str, Any]], url: str) -> list[dict[str, Any]]:
    match = _FILTER_RE.search(url)
    if match is None:
        return list(rows)
    field, raw_value, op = match.group("field"), match.group("value"), match.group("op")
    value: Any = raw_value.strip('"') if raw_value.startswith('"') else float(raw_value)

    def keep(row: dict[str, Any]) -> bool:
        current = row.get(field)
        if isinstance(value, float):
            try:
                current = float(current)
            except (TypeError, ValueError):
                return False
        else:
            current = str(current)
        if op == "Greater":
            return current > value
        if op == "GreaterOrEqual":
            return current >= value
        return current == value

    return [row for row in rows if keep(row)]


class FakeZoho:
    """
    Stateful Zoho double: OAuth token endpoint, Accounts upsert keyed on
    `Trader_ID`, the sorted v2 read and COQL lookups by tax id.
    """

    def __init__(self) -> None:
        self.accounts: dict[str, dict[str, Any]] = {}
        self.oauth_calls = 0
        self.unauthorized_next = 0
        self.reject_codes: dict[str, str] = {}
        self.upsert_batches: list[list[dict[str, Any]]] = []
        self.coql_queries: list[str] = []
        self._next_id = 1000
        self._lock = threading.Lock()

    def __call__(self, request: requests.PreparedRequest) -> Outcome:
        parsed = urlparse(request.url or "")
        if parsed.path == "/oauth/v2/token":
            with self._lock:
                self.oauth_calls += 1
                calls = self.oauth_calls
            return make_response(200, json_body={"access_token": f"T{calls}", "expires_in": 3600})

        with self._lock:
            if self.unauthorized_next > 0:
                self.unauthorized_next -= 1
                return make_response(401, json_body={"code": "INVALID_TOKEN"})

        if parsed.path.endswith("/upsert"):
            return self._upsert(request_json(request)["data"])
        if parsed.path == "/crm/v8/coql":
            return self._coql(request_json(request)["select_query"])
        if parsed.path == "/crm/v2/Accounts":
            return self._top_revision()
        return make_response(404, json_body={"code": "INVALID_URL_PATTERN"})

    def _upsert(self, rows: list[dict[str, Any]]) -> Outcome:
        results: list[dict[str, Any]] = []
        with self._lock:
            self.upsert_batches.append(rows)
            for row in rows:
                key = row.get("Trader_ID")
                code = self.reject_codes.get(key)
                if code:
                    results.append(
                        {"status": "error", "code": code, "message": f"{code} for {key}", "details": {}}
                    )
                    continue
                existing = self.accounts.get(key)
                if existing is None:
                    self._next_id += 1
                    self.accounts[key] = {"id": str(self._next_id), **row}
                    action = "insert"
                else:
                    existing.update(row)
                    action = "update"
                results.append(
                    {
                        "status": "success",
                        "code": "SUCCESS",
                        "action": action,
                        "message": "record upserted",
                        "details": {"id": self.accounts[key]["id"]},
                    }
                )
        return make_response(200, json_body={"data": results})

    def _top_revision(self) -> Outcome:
        revisions = [row["Rev_Number"] for row in self.accounts.values() if row.get("Rev_Number") is not None]
        if not revisions:
            return make_response(204)
        top = max(revisions)
        return make_response(200, json_body={"data": [{"id": "x", "Rev_Number": top}]})

    def _coql(self, query: str) -> Outcome:
        self.coql_queries.append(query)
        wanted = set(re.findall(r"'([^']*)'", query))
        rows = [
            {"id": row["id"], "Account_AFM": row.get("Account_AFM")}
            for row in self.accounts.values()
            if row.get("Account_AFM") in wanted
        ]
        if not rows:
            return make_response(204)
        return make_response(200, json_body={"data": rows})
