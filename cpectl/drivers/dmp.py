import json
from dataclasses import dataclass
from typing import Optional, Any, Tuple
from urllib.parse import quote

import requests
from pydantic import BaseModel, ValidationError
from requests.exceptions import RequestException

from ..config import Config, DmpCredentials
from ..utils.logging import get_logger

logger = get_logger(__name__)


class LoginResponse(BaseModel):
    authorization_token: str


@dataclass
class RebootResponse:
    ok: bool
    status_code: Optional[int]
    reason: str
    body: str = ""


def build_parameter_query(path: str, timeout: int = Config.DMP_PARAMETER_TIMEOUT) -> str:
    payload = json.dumps({"data": {"path": path}}, separators=(",", ":"))
    return f"timeout={timeout}&data={quote(payload, safe='')}"


class DmpClient:
    """Thin client for the DMP cloud API.

    One ``requests.Session`` is kept for the lifetime of the client so repeated
    calls reuse pooled connections. The session holds no auth state: every
    call takes the bearer token explicitly.
    """

    def __init__(self, credentials: Optional[DmpCredentials] = None, session: Optional[requests.Session] = None):
        self.credentials = credentials or DmpCredentials.from_env()
        self.base_url = self.credentials.base_url
        self.session = session or requests.Session()

    def close(self):
        self.session.close()

    def login(self) -> Optional[str]:
        url = f"{self.base_url}/auth/login"
        if not self.credentials.email or not self.credentials.password:
            logger.error("DMP login identity is not configured (CPECTL_DMP_EMAIL / CPECTL_DMP_PASSWORD)")
            return None

        # Multipart form, same as the DMP web console submits
        form = {
            "email": (None, self.credentials.email),
            "password": (None, self.credentials.password),
        }
        try:
            response = self.session.post(url, files=form, timeout=Config.HTTP_TIMEOUT)
        except RequestException as e:
            logger.error(f"DMP login request failed: {e}")
            return None

        if not response.ok:
            logger.error(f"Login failed: {response.status_code} - {response.text}")
            return None

        try:
            token = LoginResponse.model_validate(response.json()).authorization_token
        except (ValueError, ValidationError) as e:
            logger.error(f"Token not found in login response: {e}")
            return None

        if not token.strip():
            logger.error("Login response carried an empty token")
            return None
        logger.debug("Obtained DMP authorization token")
        return token

    def _auth_headers(self, token: str) -> dict:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    def get_parameter(self, token: str, serial_number: str, path: str) -> Tuple[bool, Any]:
        """GET the telemetry subtree at ``path``.

        Returns ``(True, parsed_json)`` on a 2xx JSON response, otherwise
        ``(False, None)`` after logging why.
        """
        url = f"{self.base_url}/ngacs/cpe/{serial_number}/parameter?{build_parameter_query(path)}"
        try:
            response = self.session.get(url, headers=self._auth_headers(token), timeout=Config.HTTP_TIMEOUT)
        except RequestException as e:
            logger.warning(f"Exception calling DMP parameter endpoint ({path}): {e}")
            return False, None

        if not response.ok:
            logger.warning(
                f"Error calling DMP parameter endpoint ({path}): {response.status_code} - {response.text}"
            )
            return False, None

        try:
            return True, response.json()
        except ValueError as e:
            logger.warning(f"DMP parameter endpoint ({path}) returned invalid JSON: {e}")
            return False, None

    def reboot(self, token: str, serial_number: str) -> RebootResponse:
        url = f"{self.base_url}/ngacs/cpe/{serial_number}/reboot"
        response = self.session.post(url, headers=self._auth_headers(token), timeout=Config.HTTP_TIMEOUT)
        return RebootResponse(
            ok=response.ok,
            status_code=response.status_code,
            reason=response.reason or "",
            body="" if response.ok else response.text,
        )
