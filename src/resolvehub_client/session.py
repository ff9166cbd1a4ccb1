"""Authentication token ownership and session teardown."""

from __future__ import annotations

from typing import Callable, Optional

from resolvehub_client.api.client import BackendClient
from resolvehub_client.errors import AuthenticationError, TransportError
from resolvehub_client.notifications import NotificationQueue
from resolvehub_client.schemas import NotificationKind, Session
from resolvehub_client.storage import StateStorage
from resolvehub_client.utils import get_logger

logger = get_logger(__name__)

MISSING_CREDENTIALS_MESSAGE = "Veuillez entrer email et mot de passe"
INVALID_CREDENTIALS_MESSAGE = "Identifiants invalides. Vérifiez votre email et votre mot de passe."
CONNECTION_ERROR_MESSAGE = "Impossible de se connecter au serveur"
LOGIN_SUCCESS_MESSAGE = "Connexion réussie !"
SESSION_EXPIRED_MESSAGE = "Votre session a expiré. Veuillez vous reconnecter."


class SessionManager:
    """Owns the bearer token and tears everything down on logout.

    Components register teardown callbacks (stop polling, drop cached tickets,
    reset the view). ``logout`` and ``on_unauthorized`` run the same teardown;
    only the notification shown afterwards differs. ``generation`` changes on
    every login or logout so callers can drop responses that belong to an
    earlier session.
    """

    def __init__(
        self,
        client: BackendClient,
        notifications: NotificationQueue,
        storage: StateStorage,
    ) -> None:
        self.client = client
        self.notifications = notifications
        self.storage = storage
        self._session: Optional[Session] = None
        self._teardown: list[Callable[[], None]] = []
        self.generation = 0

        client.token_provider = self.current_token
        client.on_unauthorized = self.on_unauthorized

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    def current_token(self) -> Optional[str]:
        return self._session.token if self._session else None

    def add_teardown(self, callback: Callable[[], None]) -> None:
        self._teardown.append(callback)

    def restore(self) -> Optional[Session]:
        """Resume the session persisted by a previous run, if any."""
        data = self.storage.load()
        token = data.get("token")
        if not token:
            return None
        self._session = Session(
            token=token,
            identity=data.get("expert_name") or str(data.get("expert_id") or ""),
            expert_id=data.get("expert_id"),
            name=data.get("expert_name"),
        )
        self.generation += 1
        logger.info("Restored persisted session for expert %s", self._session.expert_id)
        return self._session

    async def login(self, email: str, password: str) -> Optional[Session]:
        if not email.strip() or not password.strip():
            self.notifications.push(MISSING_CREDENTIALS_MESSAGE, NotificationKind.WARNING)
            return None

        try:
            answer = await self.client.login(email.strip(), password)
        except AuthenticationError:
            logger.info("Login refused for %s", email.strip())
            self.notifications.push(INVALID_CREDENTIALS_MESSAGE, NotificationKind.ERROR)
            return None
        except TransportError:
            self.notifications.push(CONNECTION_ERROR_MESSAGE, NotificationKind.ERROR)
            return None

        expert_id = str(answer.expert.id)
        self._session = Session(
            token=answer.token,
            identity=email.strip(),
            expert_id=expert_id,
            name=answer.expert.name,
        )
        self.generation += 1
        self.storage.update(
            token=answer.token, expert_id=expert_id, expert_name=answer.expert.name
        )
        logger.info("Expert %s logged in", expert_id)
        self.notifications.push(LOGIN_SUCCESS_MESSAGE, NotificationKind.SUCCESS)
        return self._session

    def logout(self) -> None:
        self._end_session()
        logger.info("Logged out")

    def on_unauthorized(self) -> None:
        """Forced logout after any 401. Safe to call repeatedly."""
        was_authenticated = self.is_authenticated
        self._end_session()
        if was_authenticated:
            logger.info("Session invalidated by the backend")
            self.notifications.push(SESSION_EXPIRED_MESSAGE, NotificationKind.WARNING)

    def _end_session(self) -> None:
        self._session = None
        self.generation += 1
        for callback in list(self._teardown):
            callback()
        self.notifications.clear()
        self.storage.forget("token", "expert_id", "expert_name")
