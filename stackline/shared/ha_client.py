#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Home Assistant client for the Stack Line Card
Reads the entity registry and raw history over REST, long-term statistics
over the websocket API, and forwards card actions to the host.
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import quote, urlparse

import aiohttp
import requests

from .config import HomeAssistantConnConfig
from .constants import PERIOD_MS
from .logging_setup import get_logger
from .models import Bucket, Sample
from .utils import iso_utc, parse_numeric_state, retry_with_backoff, to_epoch_ms


class HomeAssistantError(Exception):
    """Base exception for Home Assistant operations"""
    pass


class HomeAssistantConnectionError(HomeAssistantError):
    """Connection and authentication errors"""
    pass


class HomeAssistantQueryError(HomeAssistantError):
    """Rejected or malformed query responses"""
    pass


ActionListener = Callable[[str, Dict[str, Any]], None]

# Action kinds that are UI events rather than service calls
UI_ACTION_KINDS = ("more-info", "navigate", "open-url", "show-dialog", "haptic")


class HomeAssistantClient:
    """
    Home Assistant client implementing the card's data-source and action-host sides

    Handles:
    - Entity registry snapshot (state_class, friendly_name, unit)
    - Raw state history via /api/history/period
    - Pre-aggregated statistics via recorder/statistics_during_period (websocket)
    - Service calls and UI action events
    """

    def __init__(self, config: HomeAssistantConnConfig):
        """
        Initialize Home Assistant client

        Args:
            config: Home Assistant connection configuration
        """
        self.config = config
        self.logger = get_logger(self.__class__.__name__)
        self._states: Dict[str, Dict[str, Any]] = {}
        self._listeners: List[ActionListener] = []

        raw_host = (config.host or "").strip()
        parsed = urlparse(raw_host)
        scheme = parsed.scheme or "http"
        netloc = parsed.netloc or parsed.path
        if "/" in netloc:
            netloc = netloc.split("/")[0]
        if ":" not in netloc and config.port:
            netloc = f"{netloc}:{config.port}"
        self.base_url = f"{scheme}://{netloc}"
        self.ws_url = f"{'wss' if scheme == 'https' else 'ws'}://{netloc}/api/websocket"

        self.session = requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'StackLineCard/1.0',
        })
        if config.token:
            self.session.headers['Authorization'] = f"Bearer {config.token}"
        self.session.verify = config.verify_ssl

        self.logger.info(f"Initialized Home Assistant client: {self.base_url}")

    # ── REST ────────────────────────────────────────────────────

    def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Execute a REST call with retries

        Raises:
            HomeAssistantConnectionError: Connection issues or rejected token
            HomeAssistantQueryError: Non-200 responses or invalid JSON
        """
        url = f"{self.base_url}{path}"

        def _do_request():
            self.logger.debug(f"{method} {path}")
            response = self.session.request(method, url, timeout=self.config.timeout, **kwargs)
            if response.status_code == 401:
                raise HomeAssistantConnectionError("Home Assistant rejected the access token")
            if response.status_code not in (200, 201):
                raise HomeAssistantQueryError(f"HTTP {response.status_code}: {response.text}")
            if not response.content:
                return None
            try:
                return response.json()
            except json.JSONDecodeError as e:
                raise HomeAssistantQueryError(f"Invalid JSON response: {e}")

        try:
            return retry_with_backoff(
                _do_request,
                max_attempts=3,
                base_delay=1.0,
                exceptions=(requests.exceptions.RequestException, HomeAssistantQueryError)
            )
        except requests.exceptions.ConnectionError as e:
            raise HomeAssistantConnectionError(f"Failed to connect to Home Assistant: {e}")
        except requests.exceptions.Timeout as e:
            raise HomeAssistantConnectionError(f"Request timeout: {e}")
        except requests.exceptions.RequestException as e:
            raise HomeAssistantQueryError(f"Request failed: {e}")

    def test_connection(self) -> bool:
        try:
            result = self._request("GET", "/api/")
            return isinstance(result, dict) and "message" in result
        except HomeAssistantError as e:
            self.logger.error(f"Connection test failed: {e}")
            return False

    def refresh_states(self) -> Dict[str, Dict[str, Any]]:
        """
        Reload the entity registry snapshot

        Returns:
            entity_id -> {'state': ..., 'attributes': {...}}
        """
        result = self._request("GET", "/api/states") or []
        if not isinstance(result, list):
            raise HomeAssistantQueryError("Unexpected /api/states response format")
        self.set_states(result)
        self.logger.info(f"Loaded {len(self._states)} entity states")
        return self._states

    def set_states(self, states: Sequence[Dict[str, Any]]) -> None:
        self._states = {
            s["entity_id"]: {"state": s.get("state"), "attributes": s.get("attributes") or {}}
            for s in states
            if isinstance(s, dict) and s.get("entity_id")
        }

    def _attributes(self, entity_id: str) -> Dict[str, Any]:
        return (self._states.get(entity_id) or {}).get("attributes") or {}

    def has_measurement_class(self, entity_id: str) -> bool:
        return bool(self._attributes(entity_id).get("state_class"))

    def resolve_display_name(self, entity_id: str) -> Optional[str]:
        return self._attributes(entity_id).get("friendly_name")

    def resolve_unit(self, entity_id: str) -> Optional[str]:
        return self._attributes(entity_id).get("unit_of_measurement")

    # ── History ─────────────────────────────────────────────────

    def fetch_history(self, entity_ids: Sequence[str], start_ms: int, end_ms: int) -> Dict[str, List[Sample]]:
        """
        Fetch raw state history for entities over [start_ms, end_ms]

        Returns:
            entity_id -> samples in response order; non-numeric states carry value None
        """
        if not entity_ids:
            return {}
        path = f"/api/history/period/{quote(iso_utc(start_ms))}"
        params = {
            "filter_entity_id": ",".join(entity_ids),
            "end_time": iso_utc(end_ms),
            "minimal_response": "",
            "no_attributes": "",
        }
        result = self._request("GET", path, params=params) or []
        return self._parse_history(result)

    def _parse_history(self, result: Any) -> Dict[str, List[Sample]]:
        if not isinstance(result, list):
            raise HomeAssistantQueryError("Unexpected history response format")
        history: Dict[str, List[Sample]] = {}
        for entries in result:
            if not entries or not isinstance(entries, list):
                continue
            # minimal_response only carries entity_id on the first entry
            entity_id = entries[0].get("entity_id")
            if not entity_id:
                continue
            samples = history.setdefault(entity_id, [])
            for entry in entries:
                ts = to_epoch_ms(entry.get("last_updated") or entry.get("last_changed"))
                if ts is None:
                    continue
                samples.append(Sample(timestamp_ms=ts, value=parse_numeric_state(entry.get("state"))))
        self.logger.debug(f"Parsed history for {len(history)} entities")
        return history

    async def query_raw_history(self, entity_ids: Sequence[str], start_ms: int, end_ms: int) -> Dict[str, List[Sample]]:
        return await asyncio.to_thread(self.fetch_history, list(entity_ids), start_ms, end_ms)

    # ── Statistics ──────────────────────────────────────────────

    async def query_aggregated_statistics(
        self,
        entity_ids: Sequence[str],
        start_ms: int,
        end_ms: int,
        period: str,
        types: Sequence[str],
    ) -> Dict[str, List[Bucket]]:
        """
        Query long-term statistics over the websocket API

        Raises:
            HomeAssistantConnectionError: Websocket or authentication failure
            HomeAssistantQueryError: Command rejected by Home Assistant
        """
        message = {
            "id": 1,
            "type": "recorder/statistics_during_period",
            "start_time": iso_utc(start_ms),
            "end_time": iso_utc(end_ms),
            "statistic_ids": list(entity_ids),
            "period": period,
            "types": list(types),
        }
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.ws_connect(self.ws_url, ssl=self.config.verify_ssl) as ws:
                    await self._ws_authenticate(ws)
                    await ws.send_json(message)
                    reply = await ws.receive_json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise HomeAssistantConnectionError(f"Websocket statistics query failed: {e}")

        if not reply.get("success", False):
            raise HomeAssistantQueryError(f"Statistics query rejected: {reply.get('error')}")
        return self._parse_statistics(reply.get("result") or {}, period)

    async def _ws_authenticate(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        greeting = await ws.receive_json()
        if greeting.get("type") != "auth_required":
            raise HomeAssistantConnectionError(f"Unexpected websocket greeting: {greeting.get('type')}")
        await ws.send_json({"type": "auth", "access_token": self.config.token or ""})
        answer = await ws.receive_json()
        if answer.get("type") != "auth_ok":
            raise HomeAssistantConnectionError("Home Assistant rejected the access token")

    def _parse_statistics(self, result: Dict[str, Any], period: str) -> Dict[str, List[Bucket]]:
        width = PERIOD_MS.get(period, PERIOD_MS["hour"])
        out: Dict[str, List[Bucket]] = {}
        for entity_id, rows in result.items():
            buckets: List[Bucket] = []
            for row in rows or []:
                start = to_epoch_ms(row.get("start"))
                if start is None:
                    continue
                end = to_epoch_ms(row.get("end"))
                if end is None or end <= start:
                    end = start + width
                buckets.append(Bucket(
                    start_ms=start,
                    end_ms=end,
                    min=parse_numeric_state(row.get("min")),
                    max=parse_numeric_state(row.get("max")),
                    mean=parse_numeric_state(row.get("mean")),
                    sum=parse_numeric_state(row.get("sum")),
                    last_value=parse_numeric_state(row.get("state")),
                ))
            if buckets:
                out[entity_id] = buckets
        return out

    # ── Actions ─────────────────────────────────────────────────

    def add_listener(self, listener: ActionListener) -> None:
        """Register a callback for UI action events (more-info, navigate, ...)."""
        self._listeners.append(listener)

    def call_service(self, domain: str, service: str, data: Dict[str, Any], target: Dict[str, Any]) -> Any:
        body = dict(data)
        body.update(target)
        return self._request("POST", f"/api/services/{domain}/{service}", json=body)

    def invoke_action(self, kind: str, payload: Dict[str, Any]) -> None:
        """
        Fire-and-forget action entry point

        Service calls run off the event loop when one is running; UI events are
        handed to registered listeners.
        """
        if kind == "call-service":
            args = (payload["domain"], payload["service"], payload.get("data") or {}, payload.get("target") or {})
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self.call_service(*args)
                return
            future = loop.run_in_executor(None, self.call_service, *args)
            future.add_done_callback(self._log_service_outcome)
            return

        if kind not in UI_ACTION_KINDS:
            raise HomeAssistantQueryError(f"Unsupported action kind: {kind}")
        self.logger.info(f"UI action '{kind}': {payload}")
        for listener in self._listeners:
            listener(kind, payload)

    def _log_service_outcome(self, future: "asyncio.Future") -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self.logger.warning(f"Service call failed: {exc}")

    def close(self) -> None:
        self.session.close()


def create_client(config: HomeAssistantConnConfig) -> HomeAssistantClient:
    """
    Factory function to create a Home Assistant client

    Args:
        config: Home Assistant connection configuration

    Returns:
        Configured HomeAssistantClient instance
    """
    return HomeAssistantClient(config)
