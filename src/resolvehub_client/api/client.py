"""Async collaborator for the ResolveHub REST backend."""

from __future__ import annotations

from typing import Any, Callable, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from resolvehub_client.api.models import (
    AssistantQueryRequest,
    EmergencyNumberPayload,
    LoginRequest,
    LoginResponse,
    ReplyRequest,
    StatsPayload,
    TicketDetailPayload,
    TicketPayload,
)
from resolvehub_client.errors import (
    AuthenticationError,
    BackendError,
    TransportError,
    UnauthorizedError,
)
from resolvehub_client.schemas import EmergencyNumber, Stats, Ticket, TicketDetail
from resolvehub_client.utils import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _extract_detail(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("detail"):
        detail = body["detail"]
        return detail if isinstance(detail, str) else str(detail)
    return None


class BackendClient:
    """Thin typed wrapper over ``httpx.AsyncClient``.

    Every authenticated call sends the bearer token returned by ``token_provider``.
    A 401 on such a call invokes ``on_unauthorized`` *before* raising
    :class:`UnauthorizedError`, so the session is torn down even when the caller
    only logs the error.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 20.0,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        on_unauthorized: Optional[Callable[[], None]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.on_unauthorized = on_unauthorized
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        auth: bool = False,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        headers: dict[str, str] = {}
        if auth and self.token_provider is not None:
            token = self.token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._http.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.TransportError as exc:
            logger.error("%s %s failed: %s", method, path, exc, exc_info=True)
            raise TransportError(f"{method} {path}: {exc}") from exc

        if response.status_code == 401 and auth:
            logger.warning("%s %s answered 401, session is no longer valid", method, path)
            if self.on_unauthorized is not None:
                self.on_unauthorized()
            raise UnauthorizedError(f"{method} {path} unauthorized")

        if response.is_error:
            detail = _extract_detail(response)
            logger.warning(
                "%s %s answered %s: %s", method, path, response.status_code, detail
            )
            raise BackendError(response.status_code, detail)

        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("Non-JSON body from %s", response.request.url)
            raise BackendError(response.status_code, None) from exc

    def _decode(self, response: httpx.Response, model: type[ModelT]) -> ModelT:
        try:
            return model.model_validate(self._json(response))
        except ValidationError as exc:
            logger.warning("Malformed %s body: %s", model.__name__, exc)
            raise BackendError(response.status_code, None) from exc

    def _decode_list(self, response: httpx.Response, model: type[ModelT]) -> list[ModelT]:
        body = self._json(response)
        if not isinstance(body, list):
            logger.warning("Expected a list of %s, got %s", model.__name__, type(body).__name__)
            return []
        items: list[ModelT] = []
        for raw in body:
            try:
                items.append(model.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Skipping malformed %s: %s", model.__name__, exc)
        return items

    async def health(self) -> bool:
        """Liveness probe. Transport failures raise, a non-2xx answer returns False."""
        try:
            await self._request("GET", "/health")
        except BackendError:
            return False
        return True

    async def login(self, email: str, password: str) -> LoginResponse:
        payload = LoginRequest(email=email, password=password)
        try:
            response = await self._request("POST", "/auth/login", json=payload.model_dump())
        except BackendError as exc:
            raise AuthenticationError("Invalid credentials") from exc
        try:
            return LoginResponse.model_validate(self._json(response))
        except (ValidationError, BackendError) as exc:
            raise AuthenticationError("Malformed login answer") from exc

    async def list_tickets(self) -> list[Ticket]:
        response = await self._request("GET", "/tickets", auth=True)
        return [item.to_domain() for item in self._decode_list(response, TicketPayload)]

    async def get_ticket(self, ticket_id: int, *, auth: bool = True) -> TicketDetail:
        response = await self._request("GET", f"/tickets/{ticket_id}", auth=auth)
        return self._decode(response, TicketDetailPayload).to_domain()

    async def reply(self, ticket_id: int, message: str) -> None:
        payload = ReplyRequest(message=message)
        await self._request(
            "POST", f"/tickets/{ticket_id}/reply", auth=True, json=payload.model_dump()
        )

    async def resolve(self, ticket_id: int) -> None:
        await self._request("POST", f"/tickets/{ticket_id}/resolve", auth=True)

    async def stats(self) -> Stats:
        response = await self._request("GET", "/stats", auth=True)
        body = self._json(response)
        if not isinstance(body, dict):
            return Stats()
        try:
            return StatsPayload.model_validate(body).to_domain()
        except ValidationError as exc:
            logger.warning("Malformed stats body: %s", exc)
            return Stats()

    async def assistant_query(self, request: AssistantQueryRequest) -> dict[str, Any]:
        """Ask the assistant without creating a ticket. Returns the raw payload."""
        response = await self._request(
            "POST", "/assistant/query", json=request.model_dump(exclude_none=True)
        )
        body = self._json(response)
        return body if isinstance(body, dict) else {}

    async def escalate(self, request: AssistantQueryRequest) -> dict[str, Any]:
        """Create a ticket from the conversation summary. Returns the raw payload."""
        response = await self._request(
            "POST", "/webhooks/incoming-sms", json=request.model_dump(exclude_none=True)
        )
        body = self._json(response)
        return body if isinstance(body, dict) else {}

    async def user_tickets(self, phone: str) -> list[Ticket]:
        response = await self._request("GET", "/user-tickets", params={"phone": phone})
        return [item.to_domain() for item in self._decode_list(response, TicketPayload)]

    async def emergency_numbers(self) -> list[EmergencyNumber]:
        response = await self._request("GET", "/emergency-numbers")
        numbers = [item.to_domain() for item in self._decode_list(response, EmergencyNumberPayload)]
        return sorted(numbers, key=lambda number: number.display_order)
