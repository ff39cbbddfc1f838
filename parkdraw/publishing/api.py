import logging
import os
from urllib.parse import urljoin
from typing import Any, Mapping, Optional, Sequence

import requests
from dotenv import load_dotenv

from parkdraw.lottery import types as lt
from parkdraw.lottery.choice import ChoiceSession
from parkdraw.lottery.errors import PublishError
from .utils import build_choice_live_payload, build_results_payload, open_session

logger = logging.getLogger(__name__)


class PublicResultsClient:
    """Client for the public result documents in the Realtime Database.

    Results live at ``public/results/{building_id}`` and the state of a
    running choice ceremony at ``public/live/{building_id}``; both are
    readable without authentication by the public results page.
    """

    RESULTS_PATH = "public/results"
    LIVE_PATH = "public/live"

    def __init__(
        self,
        database_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        public_base_url: Optional[str] = None,
        timeout: int = 30,
    ):
        load_dotenv()
        url = database_url or os.getenv("FIREBASE_DATABASE_URL")
        if not url:
            raise ValueError("Environment variable 'FIREBASE_DATABASE_URL' is not set")

        self.base_url = url.rstrip("/")
        self.auth_token = auth_token or os.getenv("FIREBASE_AUTH_TOKEN")
        self.public_base_url = (
            public_base_url or os.getenv("PUBLIC_RESULTS_BASE_URL") or ""
        ).rstrip("/")
        self.session = open_session()
        self.timeout = timeout

    # -------- auth --------
    @property
    def auth_params(self) -> Mapping[str, str]:
        return {"auth": self.auth_token} if self.auth_token else {}

    # -------- core request --------
    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Any] = None,
        params: Optional[dict] = None,
    ) -> Any:
        url = urljoin(self.base_url + "/", path.strip("/") + ".json")
        try:
            r = self.session.request(
                method=method.upper(),
                url=url,
                headers={"Accept": "application/json"},
                params={**self.auth_params, **(params or {})},
                json=json,
                timeout=self.timeout,
            )
            r.raise_for_status()
        except requests.RequestException as e:
            # The request URL carries the auth token; report only method, path and status.
            status = getattr(getattr(e, "response", None), "status_code", None)
            logger.error(f"{method.upper()} {path} failed (status={status})")
            raise PublishError(
                f"{method.upper()} {path} failed"
                + (f" with HTTP {status}" if status else f": {type(e).__name__}"),
                status_code=status,
            ) from e
        return r.json() if r.content else None

    # -------- public results --------
    def publish_results(
        self,
        building_id: str,
        lottery_session: lt.LotterySession,
        participants: Sequence[lt.Participant],
        spots: Sequence[lt.ParkingSpot],
        *,
        building_name: str = "",
        company: Optional[str] = None,
        published_by: Optional[str] = None,
    ) -> dict:
        """Write the public results of ``lottery_session`` and return the document."""
        payload = build_results_payload(
            building_id,
            lottery_session,
            participants,
            spots,
            building_name=building_name,
            company=company,
            published_by=published_by,
        )
        self._request("PUT", f"{self.RESULTS_PATH}/{building_id}", json=payload)
        logger.info(
            f"Published {len(payload['results'])} result entries for building {building_id}"
        )
        return payload

    def clear_published_results(self, building_id: str) -> None:
        self._request("DELETE", f"{self.RESULTS_PATH}/{building_id}")
        logger.info(f"Cleared public results for building {building_id}")

    def fetch_public_results(self, building_id: str) -> Optional[dict]:
        return self._request("GET", f"{self.RESULTS_PATH}/{building_id}")

    def has_public_results(self, building_id: str) -> bool:
        data = self.fetch_public_results(building_id)
        return bool(data and data.get("results"))

    # -------- live choice ceremony --------
    def publish_choice_live(
        self,
        building_id: str,
        choice_session: ChoiceSession,
        participants: Sequence[lt.Participant],
        spots: Sequence[lt.ParkingSpot],
        *,
        building_name: str = "",
        session_name: str = "",
        company: Optional[str] = None,
    ) -> dict:
        payload = build_choice_live_payload(
            building_id,
            choice_session,
            participants,
            spots,
            building_name=building_name,
            session_name=session_name,
            company=company,
        )
        self._request("PUT", f"{self.LIVE_PATH}/{building_id}", json=payload)
        return payload

    def clear_choice_live(self, building_id: str) -> None:
        self._request("DELETE", f"{self.LIVE_PATH}/{building_id}")

    # -------- links --------
    def public_url(self, building_id: str) -> str:
        """URL of the public results page, as encoded in the building's QR code."""
        if not self.public_base_url:
            raise ValueError("Environment variable 'PUBLIC_RESULTS_BASE_URL' is not set")
        return f"{self.public_base_url}/resultados/{building_id}"
