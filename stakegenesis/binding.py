from typing import Dict, List, Optional, Tuple


class AddressBindingRegistry:
    """Permanent one-to-one map between source and destination addresses.

    The first accepted stake from a source address decides its destination.
    Callers must present stakes in canonical chain order for that decision
    to be reproducible.
    """

    def __init__(self) -> None:
        self._by_source: Dict[str, str] = {}
        self._by_destination: Dict[str, str] = {}

    def try_bind(self, source: str, destination: str) -> bool:
        destination = destination.lower()
        bound_destination = self._by_source.get(source)
        bound_source = self._by_destination.get(destination)
        if bound_destination is None and bound_source is None:
            self._by_source[source] = destination
            self._by_destination[destination] = source
            return True
        # a half-bound pair means one side already belongs to someone else
        return bound_destination == destination and bound_source == source

    def destination_for(self, source: str) -> Optional[str]:
        return self._by_source.get(source)

    def source_for(self, destination: str) -> Optional[str]:
        return self._by_destination.get(destination.lower())

    def bindings(self) -> List[Tuple[str, str]]:
        return sorted(self._by_source.items())

    def __len__(self) -> int:
        return len(self._by_source)

    def __contains__(self, source: str) -> bool:
        return source in self._by_source
