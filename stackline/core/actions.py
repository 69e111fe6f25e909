#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Execution of configured card actions against the host.

Host failures and malformed action targets are logged and turned into no-ops
here, so a bad action never breaks the gesture state machine that fired it.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Protocol

from ..shared.config import ActionConfig

log = logging.getLogger(__name__)

ConfirmFn = Callable[[str], bool]


class ActionHost(Protocol):
    """Host side of action execution; calls are fire-and-forget."""

    def invoke_action(self, kind: str, payload: Dict[str, Any]) -> None: ...


class ActionExecutor:
    """
    Maps an ActionConfig onto host invocations

    Kinds sent to the host: call-service, more-info, navigate, open-url,
    show-dialog and haptic.
    """

    def __init__(
        self,
        host: Optional[ActionHost],
        confirm: Optional[ConfirmFn] = None,
        default_entity: Optional[str] = None,
    ) -> None:
        self.host = host
        self.confirm = confirm
        self.default_entity = default_entity

    def execute(self, action: Optional[ActionConfig]) -> bool:
        """
        Run one action, gated on confirmation when the action asks for it.

        Returns:
            True when the action was dispatched (haptic sent), False when it was
            skipped: no host, no action, kind 'none', or confirmation declined.
        """
        if self.host is None or action is None or not action.is_active:
            return False

        text = action.confirmation.text if action.confirmation else None
        if text and not self._confirmed(text):
            log.info(f"Action '{action.action}' declined at confirmation")
            return False

        try:
            self._dispatch(action)
        except Exception as e:
            log.warning(f"Action '{action.action}' failed: {e}")

        self._send("haptic", {"type": "light"})
        return True

    def _confirmed(self, text: str) -> bool:
        if self.confirm is None:
            log.warning("Action requires confirmation but no confirmation handler is set")
            return False
        try:
            return bool(self.confirm(text))
        except Exception as e:
            log.warning(f"Confirmation handler failed: {e}")
            return False

    def _dispatch(self, action: ActionConfig) -> None:
        kind = action.action
        if kind == "more-info":
            entity_id = action.entity or self.default_entity
            if entity_id:
                self._send("more-info", {"entity_id": entity_id})
        elif kind == "toggle":
            entity_id = action.entity or self.default_entity
            if entity_id:
                self._call_service("homeassistant", "toggle", {"entity_id": entity_id}, {})
        elif kind == "navigate":
            if action.navigation_path:
                self._send("navigate", {"path": action.navigation_path, "replace": False})
        elif kind == "url":
            if action.url_path:
                self._send("open-url", {"url": action.url_path, "target": "_blank"})
        elif kind == "perform-action":
            if action.perform_action:
                domain, _, service = action.perform_action.partition(".")
                if domain and service:
                    self._call_service(domain, service, action.data or {}, action.target or {})
                else:
                    log.warning(f"Malformed perform_action '{action.perform_action}', expected 'domain.service'")
        elif kind == "assist":
            self._send("show-dialog", {
                "dialog_tag": "dialog-voice-command",
                "dialog_params": {},
            })

    def _call_service(self, domain: str, service: str, data: Dict[str, Any], target: Dict[str, Any]) -> None:
        self._send("call-service", {
            "domain": domain,
            "service": service,
            "data": dict(data),
            "target": dict(target),
        })

    def _send(self, kind: str, payload: Dict[str, Any]) -> None:
        assert self.host is not None
        try:
            self.host.invoke_action(kind, payload)
        except Exception as e:
            log.warning(f"Host rejected '{kind}': {e}")
