import logging
import re
from typing import Iterable, Mapping, Sequence

from serial_prober import _exceptions
from serial_prober import _scanning

log = logging.getLogger("serial_prober.filter")

FilterGroup = Mapping[str, str | re.Pattern]


class PortFilter:
    """Attribute patterns selecting SerialPort results.

    Each group maps attribute names to regular expressions; every pattern
    in a group must be found in its attribute (AND), and a port is
    selected if any one group fits (OR). A missing attribute, or one that
    isn't a string, never matches. With no groups at all, nothing matches.
    """

    def __init__(self, groups: Sequence[FilterGroup]):
        self._groups = [_compile_group(g) for g in groups]
        if log.isEnabledFor(logging.DEBUG):
            text = "".join(
                "\n  " + " ".join(f"{k}~/{rx.pattern}/" for k, rx in g.items())
                for g in self._groups
            )
            log.debug("Filter (%d groups):%s", len(self._groups), text)

    def __repr__(self) -> str:
        return f"PortFilter({self.groups()!r})"

    def __bool__(self) -> bool:
        return bool(self._groups)

    def groups(self) -> list[dict[str, str]]:
        """The pattern source text of each group, for display"""

        return [{k: rx.pattern for k, rx in g.items()} for g in self._groups]

    def matches(self, port: _scanning.SerialPort) -> bool:
        """True if any group selects 'port'"""

        return any(_group_matches(g, port) for g in self._groups)

    def filter(
        self, ports: Iterable[_scanning.SerialPort]
    ) -> list[_scanning.SerialPort]:
        """The subset of 'ports' selected by this filter, in order"""

        out = []
        for port in ports:
            if self.matches(port):
                out.append(port)
            else:
                log.debug("%s: Filtered out", port)
        return out


def _group_matches(group: dict[str, re.Pattern], port: _scanning.SerialPort):
    for key, rx in group.items():
        value = port.attr.get(key)
        if not (isinstance(value, str) and rx.search(value)):
            return False
    return True


def _compile_group(group: FilterGroup) -> dict[str, re.Pattern]:
    out: dict[str, re.Pattern] = {}
    for key, pattern in group.items():
        if isinstance(pattern, re.Pattern):
            out[key] = pattern
            continue
        try:
            out[key] = re.compile(pattern)
        except re.error as ex:
            msg = f"Bad port filter regex: {key}~/{pattern}/"
            raise _exceptions.ProbeSpecInvalid(msg) from ex
    return out
