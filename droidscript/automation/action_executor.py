"""Action execution against a device session.

Every selector-driven action works from exactly one fresh snapshot: the
selector is resolved against it and the action is delivered to the element
found there. Outcomes are reported as ``Success``/``Failure`` values; device
exceptions never escape ``execute``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from typing import Any, Awaitable, Callable, Mapping, Optional

from ..core.config import EngineSettings
from ..core.device_manager import DeviceHandle
from ..core.errors import FailureReason
from ..core.logger import log
from ..core.snapshotter import ScreenSnapshotter
from ..screen.models import BoundingBox, ScreenElement, ScreenSnapshot
from ..screen.representation import ScreenFormat, describe_element, render
from ..script.models import MAX_TEXT_INPUT_LENGTH, ActionKind, ScrollDirection, Step, WaitCondition
from ..script.resolver import resolve_clause, resolve_indices
from ..script.selector import Selector
from ..script.variables import substitute, substitute_params
from .cancellation import CancellationToken
from .results import ExecutionResult, Failure, Success

__all__ = ["ActionExecutor", "needs_target_reresolution"]

# Swipe travel as fractions of the scroll container, finger start then end.
_SWIPE_FROM = 0.75
_SWIPE_TO = 0.25

_SINGLE_TARGET_ACTIONS = frozenset({ActionKind.TAP, ActionKind.LONG_PRESS, ActionKind.CLEAR, ActionKind.TYPE})


def needs_target_reresolution(step: Step) -> bool:
    """Whether resuming ``step`` after recovery requires its target to resolve first."""
    if step.action in _SINGLE_TARGET_ACTIONS:
        return True
    return step.action is ActionKind.READ_SCREEN and step.params.get("format") == ScreenFormat.TARGETED.value


Handler = Callable[[int, Optional[Selector], dict, Optional[CancellationToken]], Awaitable[ExecutionResult]]


class ActionExecutor:
    """Executes individual script steps with validation and error handling."""

    def __init__(
        self,
        device: DeviceHandle,
        snapshotter: ScreenSnapshotter | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        """Initialize the action executor.

        Args:
            device: Device session receiving the actions.
            snapshotter: Snapshot source; one is created for ``device`` if omitted.
            settings: Defaults for durations, polling and scroll budgets.
        """
        self.device = device
        self.settings = settings or EngineSettings()
        self.snapshotter = snapshotter or ScreenSnapshotter(device, self.settings)
        self._handlers: dict[ActionKind, Handler] = {
            ActionKind.TAP: self._tap,
            ActionKind.LONG_PRESS: self._long_press,
            ActionKind.CLEAR: self._clear,
            ActionKind.TYPE: self._type,
            ActionKind.READ_SCREEN: self._read_screen,
            ActionKind.SCROLL_TO_FIND: self._scroll_to_find,
            ActionKind.WAIT: self._wait,
            ActionKind.GLOBAL_ACTION: self._global_action,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def execute(
        self,
        step: Step,
        variables: Mapping[str, Any],
        *,
        step_index: int = 0,
        cancel: CancellationToken | None = None,
    ) -> ExecutionResult:
        """Execute one step.

        Args:
            step: The step to execute.
            variables: Bound variables used for ``${name}`` substitution.
            step_index: Position of the step in its script, recorded on the result.
            cancel: Checked between device operations of multi-snapshot actions.

        Returns:
            A ``Success`` carrying any produced value, or a ``Failure`` with
            a typed reason and the snapshot the step observed.
        """
        start = time.monotonic()
        selector = step.selector.substitute(lambda text: substitute(text, variables)) if step.selector else None
        params = substitute_params(step.params, variables)

        log.log_automation_step(step.label(), {"index": step_index, "params": _loggable(params)})

        if cancel is not None and cancel.cancelled:
            result: ExecutionResult = Failure(step_index, step.action.value, FailureReason.CANCELLED, cancel.reason)
        else:
            try:
                result = await self._handlers[step.action](step_index, selector, params, cancel)
            except Exception as exc:
                log.error(f"Step {step_index} ({step.action.value}) device error: {exc}")
                result = Failure(
                    step_index,
                    step.action.value,
                    FailureReason.DEVICE_ERROR,
                    str(exc),
                    snapshot=self.snapshotter.last_snapshot,
                )

        duration_ms = (time.monotonic() - start) * 1000
        log.log_performance(f"step {step_index} {step.action.value}", duration_ms)
        if result.ok:
            log.success(f"Step {step_index} {step.label()} completed")
        else:
            log.warning(f"Step {step_index} {step.label()} failed: {result.reason.value} {result.detail}")
        return dataclasses.replace(result, duration_ms=duration_ms)

    async def target_resolves(self, step: Step, variables: Mapping[str, Any]) -> bool:
        """Re-resolve the step's selector against a fresh snapshot."""
        if step.selector is None:
            return True
        selector = step.selector.substitute(lambda text: substitute(text, variables))
        snapshot = await self.snapshotter.capture(stabilize=True)
        matches = resolve_indices(selector, snapshot)
        log.debug(f"Re-resolved '{selector}' on snapshot {snapshot.snapshot_id}: {len(matches)} match(es)")
        return bool(matches)

    # ------------------------------------------------------------------
    # Target resolution
    # ------------------------------------------------------------------
    async def _fresh_snapshot(self) -> ScreenSnapshot:
        return await self.snapshotter.capture(stabilize=True)

    def _resolve_single(
        self,
        step_index: int,
        action: ActionKind,
        selector: Selector,
        snapshot: ScreenSnapshot,
    ) -> ScreenElement | Failure:
        clause, matches = resolve_clause(selector, snapshot)
        if not matches:
            return Failure(
                step_index,
                action.value,
                FailureReason.NO_TARGET,
                f"No element matches '{selector}'",
                snapshot=snapshot,
            )
        if len(matches) > 1 and clause.nth is None:
            return Failure(
                step_index,
                action.value,
                FailureReason.AMBIGUOUS_TARGET,
                f"{len(matches)} elements match '{selector}'",
                snapshot=snapshot,
            )
        element = snapshot.element(matches[0])
        log.debug(f"Resolved '{selector}' to {element.describe()}")
        return element

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    async def _tap(self, step_index, selector, params, cancel) -> ExecutionResult:
        snapshot = await self._fresh_snapshot()
        element = self._resolve_single(step_index, ActionKind.TAP, selector, snapshot)
        if isinstance(element, Failure):
            return element
        await self.device.tap(*element.bounds.center())
        return self._success(step_index, ActionKind.TAP, snapshot, element)

    async def _long_press(self, step_index, selector, params, cancel) -> ExecutionResult:
        snapshot = await self._fresh_snapshot()
        element = self._resolve_single(step_index, ActionKind.LONG_PRESS, selector, snapshot)
        if isinstance(element, Failure):
            return element
        duration_ms = params.get("duration_ms", self.settings.default_long_press_ms)
        x, y = element.bounds.center()
        await self.device.long_press(x, y, duration_ms)
        return self._success(step_index, ActionKind.LONG_PRESS, snapshot, element)

    async def _clear(self, step_index, selector, params, cancel) -> ExecutionResult:
        snapshot = await self._fresh_snapshot()
        element = self._resolve_single(step_index, ActionKind.CLEAR, selector, snapshot)
        if isinstance(element, Failure):
            return element
        x, y = element.bounds.center()
        await self.device.clear_text(x, y, len(element.text))
        return self._success(step_index, ActionKind.CLEAR, snapshot, element)

    async def _type(self, step_index, selector, params, cancel) -> ExecutionResult:
        text = str(params["text"])
        if len(text) > MAX_TEXT_INPUT_LENGTH:
            return Failure(
                step_index,
                ActionKind.TYPE.value,
                FailureReason.DEVICE_ERROR,
                f"Input text exceeds maximum length of {MAX_TEXT_INPUT_LENGTH} characters",
            )

        snapshot = await self._fresh_snapshot()
        element = self._resolve_single(step_index, ActionKind.TYPE, selector, snapshot)
        if isinstance(element, Failure):
            return element
        if not (element.editable or element.focusable):
            return Failure(
                step_index,
                ActionKind.TYPE.value,
                FailureReason.NO_TARGET,
                f"Element '{element.element_id}' does not accept text input",
                snapshot=snapshot,
            )
        x, y = element.bounds.center()
        await self.device.input_text(x, y, text)
        return self._success(step_index, ActionKind.TYPE, snapshot, element)

    async def _read_screen(self, step_index, selector, params, cancel) -> ExecutionResult:
        screen_format = ScreenFormat(params.get("format", ScreenFormat.SUMMARY.value))
        snapshot = await self._fresh_snapshot()
        window = params.get("window")
        if window is not None and snapshot.window_type.value != window:
            return Failure(
                step_index,
                ActionKind.READ_SCREEN.value,
                FailureReason.NO_TARGET,
                f"Foreground window is '{snapshot.window_type.value}', not '{window}'",
                snapshot=snapshot,
            )
        matches: list[int] = []
        if screen_format is ScreenFormat.TARGETED:
            matches = resolve_indices(selector, snapshot)
            if not matches:
                return Failure(
                    step_index,
                    ActionKind.READ_SCREEN.value,
                    FailureReason.NO_TARGET,
                    f"No element matches '{selector}'",
                    snapshot=snapshot,
                )
        value = render(snapshot, screen_format, matches)
        return Success(step_index, ActionKind.READ_SCREEN.value, value=value, snapshot_id=snapshot.snapshot_id)

    async def _scroll_to_find(self, step_index, selector, params, cancel) -> ExecutionResult:
        direction = ScrollDirection(params.get("direction", ScrollDirection.DOWN.value))
        max_attempts = params.get("max_attempts", self.settings.default_scroll_max_attempts)
        action = ActionKind.SCROLL_TO_FIND.value

        snapshot = await self._fresh_snapshot()
        matches = resolve_indices(selector, snapshot)
        if matches:
            return self._found(step_index, snapshot, matches[0], attempts=0)

        for attempt in range(1, max_attempts + 1):
            if cancel is not None and cancel.cancelled:
                return Failure(step_index, action, FailureReason.CANCELLED, cancel.reason, snapshot, attempts=attempt - 1)

            await self._scroll_once(snapshot, direction)
            current = await self._fresh_snapshot()
            matches = resolve_indices(selector, current)
            if matches:
                log.info(f"Found '{selector}' after {attempt} scroll(s)")
                return self._found(step_index, current, matches[0], attempts=attempt)
            if current.structurally_equal(snapshot):
                return Failure(
                    step_index,
                    action,
                    FailureReason.NOT_FOUND,
                    f"Reached end of scrollable content after {attempt} scroll(s) without finding '{selector}'",
                    current,
                    attempts=attempt,
                )
            snapshot = current

        return Failure(
            step_index,
            action,
            FailureReason.NOT_FOUND,
            f"'{selector}' not found within {max_attempts} scroll(s)",
            snapshot,
            attempts=max_attempts,
        )

    async def _scroll_once(self, snapshot: ScreenSnapshot, direction: ScrollDirection) -> None:
        container = snapshot.first_scrollable()
        area = container.bounds if container is not None else snapshot.screen_bounds()
        x1, y1, x2, y2 = _swipe_vector(area, direction)
        await self.device.swipe(x1, y1, x2, y2, self.settings.scroll_swipe_duration_ms)

    async def _wait(self, step_index, selector, params, cancel) -> ExecutionResult:
        condition = WaitCondition(params.get("condition", WaitCondition.PRESENT.value))
        timeout_ms = params.get("timeout_ms", self.settings.default_wait_timeout_ms)
        poll = self.settings.wait_poll_interval_ms / 1000
        deadline = time.monotonic() + timeout_ms / 1000
        action = ActionKind.WAIT.value

        baseline: ScreenSnapshot | None = None
        previous: ScreenSnapshot | None = None
        polls = 0
        while True:
            snapshot = await self.snapshotter.capture()
            polls += 1
            satisfied, value = _check_condition(condition, selector, snapshot, previous, baseline)
            if satisfied:
                return Success(step_index, action, value=value, attempts=polls, snapshot_id=snapshot.snapshot_id)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return Failure(
                    step_index,
                    action,
                    FailureReason.TIMEOUT,
                    f"Condition '{condition.value}' not met within {timeout_ms}ms",
                    snapshot,
                    attempts=polls,
                )
            if cancel is not None:
                if await cancel.sleep(min(poll, remaining)):
                    return Failure(step_index, action, FailureReason.CANCELLED, cancel.reason, snapshot, attempts=polls)
            else:
                await asyncio.sleep(min(poll, remaining))
            previous = snapshot
            if baseline is None:
                baseline = snapshot

    async def _global_action(self, step_index, selector, params, cancel) -> ExecutionResult:
        await self.device.global_action(params["name"])
        return Success(step_index, ActionKind.GLOBAL_ACTION.value, value=params["name"])

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _success(step_index: int, action: ActionKind, snapshot: ScreenSnapshot, element: ScreenElement) -> Success:
        return Success(
            step_index,
            action.value,
            target=snapshot.ref(element.index),
            snapshot_id=snapshot.snapshot_id,
        )

    @staticmethod
    def _found(step_index: int, snapshot: ScreenSnapshot, index: int, attempts: int) -> Success:
        return Success(
            step_index,
            ActionKind.SCROLL_TO_FIND.value,
            value=describe_element(snapshot.element(index)),
            target=snapshot.ref(index),
            attempts=attempts,
            snapshot_id=snapshot.snapshot_id,
        )


def _check_condition(
    condition: WaitCondition,
    selector: Selector | None,
    snapshot: ScreenSnapshot,
    previous: ScreenSnapshot | None,
    baseline: ScreenSnapshot | None,
) -> tuple[bool, Any]:
    """Evaluate one poll; change conditions compare against the first poll."""
    if condition is WaitCondition.STABLE:
        return previous is not None and snapshot.structurally_equal(previous), None
    if condition is WaitCondition.WINDOW_CHANGED:
        window = snapshot.window_info()
        return baseline is not None and window != baseline.window_info(), window
    if condition is WaitCondition.CONTENT_CHANGED:
        return baseline is not None and not snapshot.structurally_equal(baseline), None

    matches = resolve_indices(selector, snapshot)
    if condition is WaitCondition.ABSENT:
        return not matches, None
    if condition is WaitCondition.ENABLED:
        matches = [index for index in matches if snapshot.element(index).enabled]
    if matches:
        return True, describe_element(snapshot.element(matches[0]))
    return False, None


def _swipe_vector(area: BoundingBox, direction: ScrollDirection) -> tuple[int, int, int, int]:
    """Finger path that scrolls the content of ``area`` towards ``direction``."""
    cx, cy = area.center()
    near_y = area.y + int(area.h * _SWIPE_TO)
    far_y = area.y + int(area.h * _SWIPE_FROM)
    near_x = area.x + int(area.w * _SWIPE_TO)
    far_x = area.x + int(area.w * _SWIPE_FROM)
    if direction is ScrollDirection.DOWN:
        return cx, far_y, cx, near_y
    if direction is ScrollDirection.UP:
        return cx, near_y, cx, far_y
    if direction is ScrollDirection.RIGHT:
        return far_x, cy, near_x, cy
    return near_x, cy, far_x, cy


def _loggable(params: Mapping[str, Any]) -> dict[str, Any]:
    """Keep typed text out of the log."""
    return {key: (f"<{len(value)} chars>" if key == "text" else value) for key, value in params.items()}
