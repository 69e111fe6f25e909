#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tap / hold / double-tap resolution over raw pointer events.

States:
  IDLE                 nothing pending
  HOLD_ARMED           pointer is down and the hold timer is running
  AWAITING_SECOND_TAP  one tap completed; waiting to see if a second follows

A hold that fires swallows the pointer-up of the same press. When a
double-tap action is configured, a single tap only fires after the
double-tap window expires without a second tap.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from ..shared.config import ActionConfig
from ..shared.constants import DOUBLE_TAP_THRESHOLD_MS, HOLD_THRESHOLD_MS
from ..shared.models import GesturePhase, GestureState
from .scheduler import Scheduler, TimerHandle

log = logging.getLogger(__name__)


def _active(action: Optional[ActionConfig]) -> bool:
    return action is not None and action.is_active


class GestureDispatcher:
    def __init__(
        self,
        scheduler: Scheduler,
        execute: Callable[[ActionConfig], object],
        tap_action: Optional[ActionConfig] = None,
        hold_action: Optional[ActionConfig] = None,
        double_tap_action: Optional[ActionConfig] = None,
        hold_ms: int = HOLD_THRESHOLD_MS,
        double_tap_ms: int = DOUBLE_TAP_THRESHOLD_MS,
    ) -> None:
        self.scheduler = scheduler
        self.execute = execute
        self.tap_action = tap_action
        self.hold_action = hold_action
        self.double_tap_action = double_tap_action
        self.hold_ms = hold_ms
        self.double_tap_ms = double_tap_ms
        self.state = GestureState()
        self._hold_timer: Optional[TimerHandle] = None
        self._tap_timer: Optional[TimerHandle] = None

    @property
    def phase(self) -> GesturePhase:
        return self.state.phase

    def has_any_action(self) -> bool:
        return _active(self.tap_action) or _active(self.hold_action) or _active(self.double_tap_action)

    def should_prevent_context_menu(self) -> bool:
        # A long press would otherwise open the context menu before the hold fires
        return _active(self.hold_action)

    def pointer_down(self) -> None:
        self.state.hold_fired = False
        self._cancel_hold()
        if _active(self.hold_action):
            self._hold_timer = self.scheduler.call_later(self.hold_ms, self._on_hold)
            self.state.hold_armed = True
            self.state.phase = GesturePhase.HOLD_ARMED

    def pointer_up(self, now_ms: Optional[int] = None) -> None:
        now = self.scheduler.now_ms() if now_ms is None else int(now_ms)
        self._cancel_hold()

        if self.state.hold_fired:
            # this press already resolved as a hold
            self.state.hold_fired = False
            self.state.phase = GesturePhase.IDLE
            return

        if _active(self.double_tap_action):
            pending = self.state.pending_tap_at_ms
            if pending is not None and now - pending < self.double_tap_ms:
                self._cancel_tap()
                self.state.pending_tap_at_ms = None
                self.state.phase = GesturePhase.IDLE
                self._fire(self.double_tap_action, "double_tap")
            else:
                self._cancel_tap()
                self.state.pending_tap_at_ms = now
                self.state.phase = GesturePhase.AWAITING_SECOND_TAP
                self._tap_timer = self.scheduler.call_later(self.double_tap_ms, self._on_tap_timeout)
            return

        self.state.phase = GesturePhase.IDLE
        if _active(self.tap_action):
            self._fire(self.tap_action, "tap")

    def pointer_cancel(self) -> None:
        self._cancel_hold()
        self._cancel_tap()
        self.state.reset()

    def close(self) -> None:
        """Cancel every pending timer; nothing fires after this."""
        self.pointer_cancel()

    def _on_hold(self) -> None:
        self._hold_timer = None
        self.state.hold_armed = False
        self.state.hold_fired = True
        self.state.phase = GesturePhase.IDLE
        self._fire(self.hold_action, "hold")

    def _on_tap_timeout(self) -> None:
        self._tap_timer = None
        self.state.pending_tap_at_ms = None
        self.state.phase = GesturePhase.IDLE
        if _active(self.tap_action):
            self._fire(self.tap_action, "tap")

    def _fire(self, action: Optional[ActionConfig], gesture: str) -> None:
        if action is None:
            return
        log.debug(f"Gesture '{gesture}' -> action '{action.action}'")
        self.execute(action)

    def _cancel_hold(self) -> None:
        if self._hold_timer is not None:
            self._hold_timer.cancel()
            self._hold_timer = None
        self.state.hold_armed = False
        if self.state.phase == GesturePhase.HOLD_ARMED:
            self.state.phase = GesturePhase.AWAITING_SECOND_TAP if self._tap_timer is not None else GesturePhase.IDLE

    def _cancel_tap(self) -> None:
        if self._tap_timer is not None:
            self._tap_timer.cancel()
            self._tap_timer = None
