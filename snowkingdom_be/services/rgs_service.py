import logging
import threading
from typing import Optional

import requests

logger = logging.getLogger(__name__)

SPIN_DATA_PATH = "/rgs/spin-data"
ACTION_GAME_SPIN_PATH = "/rgs/action-game-spin"


class OptionalRgsService:
    """
    Forwards spin results to a remote game server when enabled.

    Delivery is best effort. Failures are logged and never reach the play
    request that produced the data.
    """

    def __init__(self, enabled: bool = False, base_url: str = "http://localhost:5000",
                 timeout: float = 3.0, async_mode: bool = True):
        self.enabled = enabled
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self.async_mode = async_mode

    @classmethod
    def from_config(cls, config) -> "OptionalRgsService":
        return cls(
            enabled=bool(config.get('RGS_ENABLED', False)),
            base_url=config.get('RGS_URL', "http://localhost:5000"),
            timeout=float(config.get('RGS_TIMEOUT_SECONDS', 3.0)),
            async_mode=bool(config.get('RGS_ASYNC', True)),
        )

    def send_spin_data(self, session_id: str, game_id: str, payload: dict) -> Optional[threading.Thread]:
        """Posts a play result to `/rgs/spin-data`."""
        if not self.enabled:
            return None
        body = dict(payload)
        body['sessionId'] = session_id
        body['gameId'] = game_id
        return self._dispatch(SPIN_DATA_PATH, session_id, body)

    def send_action_game_spin_data(self, session_id: str, payload: dict) -> Optional[threading.Thread]:
        """Posts an action game wheel result to `/rgs/action-game-spin`."""
        if not self.enabled:
            return None
        body = dict(payload)
        body['sessionId'] = session_id
        return self._dispatch(ACTION_GAME_SPIN_PATH, session_id, body)

    def _dispatch(self, path, session_id, body):
        if not self.async_mode:
            self._post(path, session_id, body)
            return None
        thread = threading.Thread(target=self._post, args=(path, session_id, body), daemon=True)
        thread.start()
        return thread

    def _post(self, path, session_id, body) -> bool:
        url = f"{self.base_url}{path}"
        try:
            response = requests.post(url, json=body, timeout=self.timeout)
            if 200 <= response.status_code < 300:
                logger.info(f"Sent {path} for session {session_id} to RGS")
                return True
            logger.warning(f"RGS returned {response.status_code} for {path} (session {session_id})")
            return False
        except requests.Timeout:
            logger.warning(f"RGS request to {url} timed out after {self.timeout}s (session {session_id})")
        except requests.ConnectionError as e:
            logger.warning(f"Could not reach RGS at {url} (session {session_id}): {e}")
        except requests.RequestException as e:
            logger.warning(f"RGS request to {url} failed (session {session_id}): {e}")
        except Exception as e:
            logger.error(f"Unexpected error sending {path} for session {session_id}: {e}", exc_info=True)
        return False
