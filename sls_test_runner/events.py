"""Loading of synthetic invocation events."""

import json
import logging
from collections.abc import Mapping
from typing import Any

from sls_test_runner.models.descriptor import FunctionDescriptor

log = logging.getLogger(__name__)


class EventLoadError(Exception):
    """Raised when an event file exists but cannot be used."""


def load_event(descriptor: FunctionDescriptor) -> Mapping[str, Any]:
    """Load the event payload for a function.

    The event file lives next to the handler module. A missing file yields an
    empty event.
    """
    event_path = descriptor.event_path
    if not event_path.is_file():
        log.debug("No event file at %s, using empty event", event_path)
        return {}

    try:
        event = json.loads(event_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise EventLoadError(f"Cannot load event file {event_path}: {e}") from e

    if not isinstance(event, dict):
        raise EventLoadError(
            f"Event file {event_path} must contain a JSON object, "
            f"got {type(event).__name__}"
        )

    return event
