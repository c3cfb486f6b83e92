import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

log = logging.getLogger(__name__)

#* --- Event Names ---
GLOBE_DOWN = "globe-down"
GLOBE_UP = "globe-up"
RIGHT_MODIFIER_DOWN = "right-modifier-down"
RIGHT_MODIFIER_UP = "right-modifier-up"
MODIFIER_UP = "modifier-up"
ERROR = "error"

EVENT_NAMES = (GLOBE_DOWN, GLOBE_UP, RIGHT_MODIFIER_DOWN, RIGHT_MODIFIER_UP, MODIFIER_UP, ERROR)

# Exact-match tags carry no value.
_LITERAL_TAGS = {
    "FN_DOWN": GLOBE_DOWN,
    "FN_UP": GLOBE_UP,
}

# Prefix tags: (prefix, event, lower-case the value)
_PREFIX_TAGS = (
    ("RIGHT_MOD_DOWN:", RIGHT_MODIFIER_DOWN, False),
    ("RIGHT_MOD_UP:", RIGHT_MODIFIER_UP, False),
    ("MODIFIER_UP:", MODIFIER_UP, True),
)


def parse_listener_line(line: str) -> Optional[Tuple[str, Optional[str]]]:
    """
    Maps one stdout line of the listener to an (event, value) pair.

    :param line: A single line, with or without its trailing newline.
    :return: The event and its value, or None for unrecognized or empty-valued lines.
    """
    line = line.strip()
    if not line:
        return None

    if line in _LITERAL_TAGS:
        return _LITERAL_TAGS[line], None

    for prefix, event, lower in _PREFIX_TAGS:
        if line.startswith(prefix):
            value = line[len(prefix):].strip()
            if not value:
                return None
            return event, value.lower() if lower else value
    return None


class EventEmitter:
    """Thread-safe listener registry keyed by event name."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Callable]] = {}
        self._listeners_lock = threading.Lock()

    def on(self, event: str, callback: Callable) -> None:
        """Registers `callback` for `event`."""
        if event not in EVENT_NAMES:
            raise ValueError(f"Unknown event '{event}'. Known events: {', '.join(EVENT_NAMES)}")
        with self._listeners_lock:
            self._listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Callable) -> None:
        """Removes a previously registered callback; unknown callbacks are ignored."""
        with self._listeners_lock:
            callbacks = self._listeners.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def emit(self, event: str, *args) -> None:
        """Calls every listener of `event` in registration order."""
        with self._listeners_lock:
            callbacks = list(self._listeners.get(event, []))
        for callback in callbacks:
            try:
                callback(*args)
            except Exception as e:
                log.error(f"Listener for '{event}' raised: {e}", exc_info=True)
