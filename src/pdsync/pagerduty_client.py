"""PagerDuty REST API v2 client: schedule lookup and current on-call user."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Iterable, Optional

import requests

from .errors import ApiError, NotFoundError
from .models import ProviderUser, Schedule

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.pagerduty.com"
PAGE_LIMIT = 100


def _decode(resp: requests.Response, path: str) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as e:
        raise ApiError(f"GET {path} returned a non-JSON body: {resp.text[:200]}") from e
    if not isinstance(data, dict):
        raise ApiError(f"GET {path} returned unexpected payload: {str(data)[:200]}")
    return data


class PagerDutyClient:
    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Token token={token}",
                "Accept": "application/vnd.pagerduty+json;version=2",
                "Content-Type": "application/json",
            }
        )

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        logger.debug("API GET %s params=%s", url, params)
        try:
            return self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise ApiError(f"GET {path} failed: {e}") from e

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        resp = self._get(path, params=params)
        if resp.status_code >= 400:
            raise ApiError(f"GET {path} returned HTTP {resp.status_code}: {resp.text[:500]}")
        return _decode(resp, path)

    def _paginate(self, path: str, key: str, params: Optional[Dict[str, Any]] = None) -> Iterable[Dict[str, Any]]:
        params = dict(params or {})
        offset = 0
        while True:
            params.update(offset=offset, limit=PAGE_LIMIT)
            data = self._get_json(path, params=dict(params))
            items = data.get(key, [])
            for item in items:
                yield item
            if not data.get("more") or not items:
                break
            offset += len(items)

    def get_schedule(self, schedule_id: str = "", name: str = "") -> Optional[Schedule]:
        """Look a schedule up by ID, or by exact name. Returns None if it does not exist."""
        if schedule_id:
            resp = self._get(f"/schedules/{schedule_id}")
            if resp.status_code == 404:
                return None
            if resp.status_code >= 400:
                raise ApiError(f"failed to get schedule {schedule_id}: HTTP {resp.status_code}: {resp.text[:500]}")
            data = _decode(resp, f"/schedules/{schedule_id}").get("schedule") or {}
            if not data.get("id"):
                raise ApiError(f"failed to get schedule {schedule_id}: response carries no schedule ID")
            return Schedule(id=data["id"], name=data.get("name", ""))

        for data in self._paginate("/schedules", "schedules", params={"query": name}):
            # query is a substring match
            if data.get("name") == name and data.get("id"):
                return Schedule(id=data["id"], name=data["name"])
        return None

    def get_on_call_user(self, schedule: Schedule) -> ProviderUser:
        now = datetime.now(tz=timezone.utc)
        params = {
            "schedule_ids[]": [schedule.id],
            "include[]": ["users"],
            "since": now.isoformat(),
            "until": (now + timedelta(seconds=1)).isoformat(),
        }
        oncalls = list(self._paginate("/oncalls", "oncalls", params=params))
        if not oncalls:
            raise NotFoundError(f"no on-call user found for schedule {schedule}")

        oncalls.sort(key=lambda oc: oc.get("escalation_level") or 0)
        user = oncalls[0].get("user") or {}
        return ProviderUser(
            id=user.get("id", ""),
            name=user.get("name") or user.get("summary", ""),
            email=user.get("email", ""),
        )
