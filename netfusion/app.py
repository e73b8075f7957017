"""State of the terminal front end: data from the daemon plus navigation."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from netfusion.events import NetfusionEvent
from netfusion.types import BondState, InterfaceInfo, SystemStatus, TunnelState

TAB_COUNT = 4
MAX_EVENTS = 100
MAX_HEALTH_SAMPLES = 60
SCROLL_STEP = 3


@dataclass
class App:
    """Everything the UI shows; tabs are 0 dashboard, 1 interfaces, 2 bonds, 3 logs."""

    running: bool = True
    status: SystemStatus | None = None
    interfaces: list[InterfaceInfo] = field(default_factory=list)
    events: deque[NetfusionEvent] = field(default_factory=lambda: deque(maxlen=MAX_EVENTS))
    selected_tab: int = 0
    connected: bool = False
    error: str | None = None
    dirty: bool = False
    is_loading: bool = False
    last_refresh: datetime | None = None
    health_history: deque[float] = field(
        default_factory=lambda: deque(maxlen=MAX_HEALTH_SAMPLES)
    )
    bonds: list[BondState] = field(default_factory=list)
    tunnels: list[TunnelState] = field(default_factory=list)
    interface_scroll_pos: int = 0
    log_scroll_pos: int = 0
    selected_interface_idx: int = 0
    interface_view_height: int = 0
    log_view_height: int = 0

    def next_tab(self) -> None:
        self.selected_tab = (self.selected_tab + 1) % TAB_COUNT
        self.mark_dirty()

    def prev_tab(self) -> None:
        self.selected_tab = (self.selected_tab - 1) % TAB_COUNT
        self.mark_dirty()

    def push_event(self, event: NetfusionEvent) -> None:
        """Append an event, dropping the oldest beyond the buffer size."""
        self.events.append(event)

    def mark_dirty(self) -> None:
        self.dirty = True

    def take_dirty(self) -> bool:
        """Return whether a redraw is due and clear the flag."""
        dirty, self.dirty = self.dirty, False
        return dirty

    def push_health_sample(self, score: float) -> None:
        self.health_history.append(score)

    def select_interface_up(self) -> None:
        if self.selected_interface_idx > 0:
            self.selected_interface_idx -= 1
            self.mark_dirty()

    def select_interface_down(self) -> None:
        if self.selected_interface_idx + 1 < len(self.interfaces):
            self.selected_interface_idx += 1
            self.mark_dirty()

    @property
    def _max_log_scroll(self) -> int:
        return max(0, len(self.events) - self.log_view_height)

    def scroll_logs_up(self) -> None:
        self.log_scroll_pos = max(0, self.log_scroll_pos - SCROLL_STEP)
        self.mark_dirty()

    def scroll_logs_down(self) -> None:
        self.log_scroll_pos = min(self.log_scroll_pos + SCROLL_STEP, self._max_log_scroll)
        self.mark_dirty()

    def scroll_logs_page_up(self) -> None:
        self.log_scroll_pos = max(0, self.log_scroll_pos - self.log_view_height)
        self.mark_dirty()

    def scroll_logs_page_down(self) -> None:
        self.log_scroll_pos = min(
            self.log_scroll_pos + self.log_view_height, self._max_log_scroll
        )
        self.mark_dirty()

    def scroll_logs_top(self) -> None:
        self.log_scroll_pos = 0
        self.mark_dirty()

    def scroll_logs_bottom(self) -> None:
        self.log_scroll_pos = self._max_log_scroll
        self.mark_dirty()

    def apply_status(self, status: SystemStatus) -> None:
        if status.health is not None:
            self.push_health_sample(status.health.overall)
        self.status = status
        self.mark_dirty()

    def apply_interfaces(self, interfaces: Iterable[InterfaceInfo]) -> None:
        """Replace the interface list, keep the cursor in range, record health."""
        self.interfaces = list(interfaces)
        if self.selected_interface_idx >= len(self.interfaces):
            self.selected_interface_idx = max(0, len(self.interfaces) - 1)
        for iface in self.interfaces:
            if iface.health is not None:
                self.push_health_sample(iface.health.overall)
        self.mark_dirty()

    def apply_bonds(self, bonds: Iterable[BondState]) -> None:
        self.bonds = list(bonds)
        self.mark_dirty()

    def apply_tunnels(self, tunnels: Iterable[TunnelState]) -> None:
        self.tunnels = list(tunnels)
        self.mark_dirty()

    def apply_events(self, events: Iterable[NetfusionEvent]) -> None:
        for event in events:
            self.push_event(event)

    def set_loading(self, loading: bool) -> None:
        self.is_loading = loading
        self.mark_dirty()

    def set_error(self, error: str) -> None:
        self.error = error
        self.mark_dirty()

    def set_last_refresh(self) -> None:
        self.last_refresh = datetime.now(timezone.utc)