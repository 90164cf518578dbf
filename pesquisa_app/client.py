from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    """
    Client-side auth state. Loaded once at startup, written back on every
    change; only the user, the flag and the token are persisted.
    """

    path: Optional[Path] = None
    user: Optional[Dict[str, Any]] = None
    is_authenticated: bool = False
    access_token: Optional[str] = None
    error: Optional[str] = field(default=None, compare=False)

    @classmethod
    def load(cls, path) -> "SessionState":
        path = Path(path)
        state = cls(path=path)
        if not path.exists():
            return state
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", path, e)
            return state
        state.user = data.get("user")
        state.is_authenticated = bool(data.get("is_authenticated"))
        state.access_token = data.get("access_token")
        return state

    def save(self) -> None:
        if self.path is None:
            return
        data = {k: v for k, v in asdict(self).items() if k not in ("path", "error")}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def set_signed_in(self, user: Dict[str, Any], token: str) -> None:
        self.user = user
        self.access_token = token
        self.is_authenticated = True
        self.error = None
        self.save()

    def clear(self) -> None:
        self.user = None
        self.access_token = None
        self.is_authenticated = False
        self.save()


class PesquisaClient:
    def __init__(
        self,
        base_url: str,
        state: SessionState,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.state = state
        self._transport = transport
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        headers = {}
        if self.state.access_token:
            headers["Authorization"] = f"Bearer {self.state.access_token}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            transport=self._transport,
            timeout=self._timeout,
        )

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        async with self._client() as client:
            resp = await client.request(method, url, **kwargs)
            resp.raise_for_status()
            if resp.status_code == 204 or not resp.content:
                return None
            return resp.json()

    # --- auth ---
    async def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        try:
            data = await self._request(
                "POST", "/api/auth/login", json={"email": email, "password": password}
            )
        except httpx.HTTPStatusError as e:
            self.state.error = _detail(e.response)
            self.state.clear()
            raise
        self.state.set_signed_in(data["user"], data["access_token"])
        return data["user"]

    async def sign_out(self) -> None:
        try:
            if self.state.access_token:
                await self._request("POST", "/api/auth/logout")
        finally:
            self.state.clear()

    async def check_session(self) -> Optional[Dict[str, Any]]:
        """Revalidates the persisted token; clears the state when the server rejects it."""
        if not self.state.access_token:
            return None
        try:
            user = await self._request("GET", "/api/auth/session")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 401:
                self.state.clear()
                return None
            raise
        self.state.user = user
        self.state.is_authenticated = True
        self.state.save()
        return user

    # --- researcher ---
    async def my_assignments(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/api/researchers/me/assignments")

    async def update_assignment_status(self, assignment_id: str, status: str) -> Dict[str, Any]:
        return await self._request(
            "PATCH", f"/api/assignments/{assignment_id}/status", json={"status": status}
        )

    # --- admin ---
    async def list_surveys(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/api/surveys")

    async def create_survey(self, survey: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/api/surveys", json=survey)

    async def assign_survey(self, researcher_id: str, survey_id: str) -> Dict[str, Any]:
        return await self._request(
            "POST", f"/api/users/{researcher_id}/assignments", json={"survey_id": survey_id}
        )


def _detail(response: httpx.Response) -> str:
    try:
        return response.json().get("detail", response.text)
    except ValueError:
        return response.text
