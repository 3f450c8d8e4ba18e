"""Forwarding relays used to reach the upstream API and the sticky relay preference."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from ..utils.config import RelayDefinition

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..store import LocalStore

CUSTOM_RELAY_NAME = "custom"
DIRECT_RELAY_NAME = "direct"


@dataclass(frozen=True, slots=True)
class Relay:
    """One candidate route to the upstream API."""

    name: str
    template: str
    unwrap: str | None = None
    encode_target: bool = True

    @classmethod
    def from_definition(cls, definition: RelayDefinition) -> Relay:
        return cls(
            name=definition.name,
            template=definition.template,
            unwrap=definition.unwrap,
            encode_target=definition.encode_target,
        )

    @classmethod
    def custom(cls, base_url: str) -> Relay:
        """A self-hosted relay answering ``GET {base_url}?url=<encoded target>``."""

        return cls(name=CUSTOM_RELAY_NAME, template=f"{base_url.strip()}?url={{url}}")

    @classmethod
    def direct(cls) -> Relay:
        return cls(name=DIRECT_RELAY_NAME, template="{url}", encode_target=False)

    def build(self, target_url: str) -> str:
        target = quote(target_url, safe="") if self.encode_target else target_url
        return self.template.replace("{url}", target)

    def parse(self, text: str) -> Any:
        """Decode the relay body, unwrapping relays that embed the upstream body as a string.

        Raises:
            ValueError: If the body (or the wrapped body) is not valid JSON
        """

        data = json.loads(text)
        if self.unwrap is None:
            return data
        if not isinstance(data, dict) or not isinstance(data.get(self.unwrap), str):
            raise ValueError(f"relay wrapper is missing '{self.unwrap}'")
        return json.loads(data[self.unwrap])


class RelayContext:
    """Remembers which public relay succeeded most recently.

    The preference lives only as long as the instance.
    """

    def __init__(self, preferred: str | None = None) -> None:
        self._preferred = preferred

    @property
    def preferred(self) -> str | None:
        return self._preferred

    def remember(self, name: str) -> None:
        self._preferred = name

    def order(self, relays: Sequence[Relay]) -> list[Relay]:
        """Return ``relays`` with the preferred relay moved to the front."""

        ordered = list(relays)
        for index, relay in enumerate(ordered):
            if relay.name == self.preferred and index > 0:
                ordered.insert(0, ordered.pop(index))
                break
        return ordered


class StoredRelayContext(RelayContext):
    """Relay preference persisted in the local store across restarts."""

    def __init__(self, store: LocalStore) -> None:
        super().__init__(store.get_relay_preference())
        self._store = store

    def remember(self, name: str) -> None:
        if name != self.preferred:
            self._store.set_relay_preference(name)
        super().remember(name)
