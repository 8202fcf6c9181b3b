"""
irobot.telemetry — Snapshot accumulation, debouncing and state mapping.

Robots publish their shadow in many small fragments, sometimes dozens per
second while a mission starts. :class:`TelemetryDebouncer` folds them into one
snapshot and only hands it on after a quiet period, except when a fragment
carries a complete ``cleanMissionStatus``: mission transitions are emitted
immediately.

Vendor vocabulary (``cycle`` / ``phase``) is translated into
:class:`~irobot.models.NormalizedState` by :func:`map_mission_state`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from .const import (
    CAPABILITY_BATTERY,
    CAPABILITY_BIN_FULL,
    CAPABILITY_BIN_PRESENT,
    CAPABILITY_DETECTED_PAD,
    CAPABILITY_LID_CLOSED,
    CAPABILITY_TANK_FULL,
    CAPABILITY_TANK_PRESENT,
    FIELD_BATTERY,
    FIELD_BIN,
    FIELD_DETECTED_PAD,
    FIELD_MISSION_STATUS,
    FIELD_MOP_READY,
    FIELD_TANK_LEVEL,
    QUIET_PERIOD,
)
from .models import NormalizedState

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


def mission_status(data: dict[str, Any]) -> tuple[str, str] | None:
    """Return ``(cycle, phase)`` if *data* carries a definitive mission status."""
    status = data.get(FIELD_MISSION_STATUS)
    if not isinstance(status, dict):
        return None
    cycle = status.get("cycle")
    phase = status.get("phase")
    if not cycle or not phase:
        return None
    return str(cycle), str(phase)


def map_mission_state(snapshot: dict[str, Any]) -> NormalizedState | None:
    """
    Translate the snapshot's mission status into a :class:`NormalizedState`.

    Rules, most specific first:

    ======  ==========  ===================  =============
    cycle   phase       condition            state
    ======  ==========  ===================  =============
    none    charge      battery == 100       docked
    none    charge      otherwise            charging
    any     stop                             stopped
    dock    hmUsrDock                        docked
    quick   run                              cleaning
    spot    run                              spot_cleaning
    ======  ==========  ===================  =============

    Returns ``None`` when there is no mission status or the pair is not in
    the table (e.g. ``clean/hmPostMsn``); the host keeps its previous value.
    """
    status = mission_status(snapshot)
    if status is None:
        return None
    cycle, phase = status
    if cycle == "none" and phase == "charge":
        if snapshot.get(FIELD_BATTERY) == 100:
            return NormalizedState.DOCKED
        return NormalizedState.CHARGING
    if phase == "stop":
        return NormalizedState.STOPPED
    if cycle == "dock" and phase == "hmUsrDock":
        return NormalizedState.DOCKED
    if cycle == "quick" and phase == "run":
        return NormalizedState.CLEANING
    if cycle == "spot" and phase == "run":
        return NormalizedState.SPOT_CLEANING
    return None


def derive_capabilities(snapshot: dict[str, Any]) -> dict[str, Any]:
    """
    Derive battery and accessory capability values from the snapshot.

    Each value is derived only from its own vendor field; a capability whose
    field was never reported is left out of the result (not yet known).
    """
    values: dict[str, Any] = {}

    battery = snapshot.get(FIELD_BATTERY)
    if isinstance(battery, int | float) and not isinstance(battery, bool):
        values[CAPABILITY_BATTERY] = battery

    bin_state = snapshot.get(FIELD_BIN)
    if isinstance(bin_state, dict):
        if "full" in bin_state:
            values[CAPABILITY_BIN_FULL] = bool(bin_state["full"])
        if "present" in bin_state:
            values[CAPABILITY_BIN_PRESENT] = bool(bin_state["present"])

    tank_level = snapshot.get(FIELD_TANK_LEVEL)
    if isinstance(tank_level, int | float) and not isinstance(tank_level, bool):
        values[CAPABILITY_TANK_FULL] = int(tank_level) == 100

    mop_ready = snapshot.get(FIELD_MOP_READY)
    if isinstance(mop_ready, dict):
        if "tankPresent" in mop_ready:
            values[CAPABILITY_TANK_PRESENT] = bool(mop_ready["tankPresent"])
        if "lidClosed" in mop_ready:
            values[CAPABILITY_LID_CLOSED] = bool(mop_ready["lidClosed"])

    pad = snapshot.get(FIELD_DETECTED_PAD)
    if isinstance(pad, str):
        values[CAPABILITY_DETECTED_PAD] = pad != "invalid"

    return values


class TelemetryDebouncer:
    """
    Accumulates reported-state fragments and emits settled snapshots.

    Emission rules:

    * A fragment with a definitive mission status (``cycle`` and ``phase``)
      cancels any pending timer and emits at once.
    * Any other fragment (re)arms a ``quiet_period`` timer; the snapshot is
      emitted when no further fragment arrives before it fires.

    The callback receives a copy of the merged snapshot. Timers are
    ``loop.call_later`` handles, so :meth:`cancel` must be called from the
    loop's thread.

    Example::

        debouncer = TelemetryDebouncer(on_state, quiet_period=3.0)
        debouncer.merge({"batPct": 57})
        debouncer.merge({"cleanMissionStatus": {"cycle": "quick", "phase": "run"}})
    """

    def __init__(
        self,
        callback: Callable[[dict[str, Any]], None],
        quiet_period: float = QUIET_PERIOD,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._callback = callback
        self._quiet_period = quiet_period
        self._loop = loop
        self._snapshot: dict[str, Any] = {}
        self._timer: asyncio.TimerHandle | None = None

    @property
    def snapshot(self) -> dict[str, Any]:
        """Copy of the current merged snapshot."""
        return dict(self._snapshot)

    @property
    def pending(self) -> bool:
        """True while a quiet-period emission is scheduled."""
        return self._timer is not None

    def merge(self, fragment: dict[str, Any]) -> None:
        """Shallow-merge *fragment* into the snapshot and schedule or perform emission."""
        self._snapshot.update(fragment)
        self._cancel_timer()
        if mission_status(fragment) is not None:
            self._emit()
            return
        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(self._quiet_period, self._on_quiet)

    def flush(self) -> None:
        """Emit the pending snapshot now, if an emission is scheduled."""
        if self._timer is not None:
            self._cancel_timer()
            self._emit()

    def cancel(self) -> None:
        """Drop any scheduled emission; nothing is emitted afterwards until the next merge."""
        self._cancel_timer()

    def reset(self) -> None:
        """Cancel pending emission and forget the snapshot."""
        self._cancel_timer()
        self._snapshot = {}

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_quiet(self) -> None:
        self._timer = None
        self._emit()

    def _emit(self) -> None:
        try:
            self._callback(dict(self._snapshot))
        except Exception:
            logger.exception("Telemetry callback failed")
