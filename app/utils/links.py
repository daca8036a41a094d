"""Deep links in reminder messages.

Templates look like ``https://app.example.com/parents/{parentId}?date={date}``.
``{profileId}`` is the contact's id in the player-profile system; it is
resolved through a :class:`ReadThroughCache` owned by whoever builds the
links, so lookups are memoized for that object's lifetime only. Without a
cache, or when the lookup finds nothing, a template that needs it yields no
link at all.
"""

from __future__ import annotations

import re
from typing import Callable, Generic, Hashable, Optional, TypeVar
from urllib.parse import urlparse

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


class ReadThroughCache(Generic[K, V]):
    """Memoizes ``loader``; ``None`` results are cached too."""

    def __init__(self, loader: Callable[[K], Optional[V]]):
        self._loader = loader
        self._values: dict[K, Optional[V]] = {}

    def get(self, key: K) -> Optional[V]:
        if key not in self._values:
            self._values[key] = self._loader(key)
        return self._values[key]

    def invalidate(self, key: Optional[K] = None) -> None:
        if key is None:
            self._values.clear()
        else:
            self._values.pop(key, None)

    def __len__(self) -> int:
        return len(self._values)


def template_url(template: Optional[str], variables: dict[str, str]) -> Optional[str]:
    """Fill ``{name}`` placeholders. Unresolvable placeholders or non-URLs give None."""
    if not template:
        return None
    if any(name not in variables for name in _PLACEHOLDER.findall(template)):
        return None
    value = _PLACEHOLDER.sub(lambda m: variables[m.group(1)], template)
    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        return None
    return value


class LinkBuilder:
    def __init__(
        self,
        profile_template: Optional[str] = None,
        feedback_template: Optional[str] = None,
        tests_template: Optional[str] = None,
        profile_ids: Optional[ReadThroughCache[int, str]] = None,
    ):
        self.templates = {
            "profile": profile_template,
            "feedback": feedback_template,
            "tests": tests_template,
        }
        self.profile_ids = profile_ids

    def build(
        self,
        kind: str,
        parent_id: int,
        date: str,
        session_id: Optional[int] = None,
        first_session_id: Optional[int] = None,
    ) -> Optional[str]:
        variables = {
            "parentId": str(parent_id),
            "date": date,
            "sessionId": str(session_id) if session_id else "",
            "firstSessionId": str(first_session_id) if first_session_id else "",
        }
        if self.profile_ids is not None:
            profile_id = self.profile_ids.get(parent_id)
            if profile_id:
                variables["profileId"] = profile_id
        return template_url(self.templates.get(kind), variables)
