"""Configurable access log lines built from ``$variable`` templates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from dufs.auth import get_auth_user

DEFAULT_LOG_FORMAT = '$remote_addr "$request" $status'

_log = logging.getLogger("dufs")


class _Kind(Enum):
    VARIABLE = "variable"
    HEADER = "header"
    LITERAL = "literal"


@dataclass(frozen=True)
class _Element:
    kind: _Kind
    value: str


def _parse_elements(s: str) -> list[_Element]:
    elements: list[_Element] = []
    is_var = False
    cache = ""
    for c in s + " ":
        if c == "$":
            if cache:
                elements.append(_Element(_Kind.LITERAL, cache))
            cache = ""
            is_var = True
        elif is_var and not (c.isalnum() or c == "_"):
            if cache.startswith("$http_"):
                elements.append(_Element(_Kind.HEADER, cache[len("$http_"):].replace("_", "-")))
            elif cache.startswith("$"):
                elements.append(_Element(_Kind.VARIABLE, cache[1:]))
            cache = ""
            is_var = False
        cache += c
    cache = cache.strip()
    if cache:
        elements.append(_Element(_Kind.LITERAL, cache))
    return elements


@dataclass
class HttpLogger:
    """An access log format; an empty format disables logging."""

    elements: list[_Element] = field(default_factory=lambda: _parse_elements(DEFAULT_LOG_FORMAT))

    @classmethod
    def parse(cls, s: str) -> HttpLogger:
        return cls(_parse_elements(s))

    def data(self, method: str, uri: str, headers: Mapping[str, str]) -> dict[str, str]:
        """Collect the request-derived values that the format refers to."""
        lowered = {name.lower(): value for name, value in headers.items()}
        data: dict[str, str] = {}
        for element in self.elements:
            if element.kind is _Kind.VARIABLE:
                if element.value == "request":
                    data["request"] = f"{method} {uri}"
                elif element.value == "remote_user":
                    authorization = lowered.get("authorization")
                    user = get_auth_user(authorization) if authorization is not None else None
                    if user is not None:
                        data["remote_user"] = user
            elif element.kind is _Kind.HEADER:
                value = lowered.get(element.value.lower())
                if value is not None:
                    data[element.value] = value
        return data

    def format(self, data: Mapping[str, str]) -> str:
        return "".join(
            element.value if element.kind is _Kind.LITERAL else data.get(element.value, "-")
            for element in self.elements
        )

    def log(self, data: Mapping[str, str], err: Optional[str] = None) -> None:
        if not self.elements:
            return
        output = self.format(data)
        if err is not None:
            _log.error("%s %s", output, err)
        else:
            _log.info("%s", output)