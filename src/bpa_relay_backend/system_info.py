"""
Device metadata extraction from CLI output captured in a tech support bundle.

The CLI dump is a long sequence of command transcripts, each introduced by a
prompt line such as ``> show system info``. Only the ``show system info``
transcript is of interest here; inside it the device reports itself as
``label: value`` lines::

    > show system info

    hostname: fw-edge-01
    serial: 001122
    model: PA-850
    sw-version: 10.2.3
    family: 800

    > show interface all

Extraction never fails. Missing sections or labels simply leave the
corresponding fields empty; completeness is checked by ``DeviceInfo``.
"""

from __future__ import annotations

import re
from typing import Dict, Optional

from .models import DeviceFields

SECTION_MARKER = re.compile(r"^[ \t]*>[ \t]*show system info[ \t]*$", re.MULTILINE)
PROMPT_MARKER = re.compile(r"^[ \t]*>[ \t]*\S", re.MULTILINE)

# Field name on DeviceFields -> label as printed by the device
FIELD_LABELS: Dict[str, str] = {
    "serial": "serial",
    "model": "model",
    "version": "sw-version",
    "family": "family",
}

_FIELD_PATTERNS = {
    field: re.compile(rf"^[ \t]*{re.escape(label)}[ \t]*:[ \t]*(.*?)[ \t]*$", re.MULTILINE)
    for field, label in FIELD_LABELS.items()
}


def find_system_info_section(text: str) -> Optional[str]:
    """
    Return the body of the ``show system info`` transcript, or None.

    The body runs from the line after the marker up to the next prompt line
    or the end of the text.
    """
    marker = SECTION_MARKER.search(text)
    if marker is None:
        return None
    body_start = marker.end()
    next_prompt = PROMPT_MARKER.search(text, body_start)
    body_end = next_prompt.start() if next_prompt else len(text)
    return text[body_start:body_end]


def extract_device_fields(text: str) -> DeviceFields:
    section = find_system_info_section(text.replace("\r\n", "\n"))
    if section is None:
        return DeviceFields()

    found: Dict[str, str] = {}
    for field, pattern in _FIELD_PATTERNS.items():
        match = pattern.search(section)
        if match and match.group(1):
            found[field] = match.group(1)
    return DeviceFields(**found)
