"""
Toledo serial protocol decoding.

Each protocol variant owns an ordered tuple of grammars; the first grammar
that matches a whole line wins. Only PRT2 has grammars today, the remaining
variants decode nothing until their frame layouts are added to ``GRAMMARS``.

PRT2 frames look like ``ST,GS,+00.150kg``:
  - ST/US  stable or unstable (in motion)
  - GS/NT  gross or net
  - sign, value, unit (kg or g)
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

from .errors import ParseFailure
from .models import ProtocolVariant, WeightReading

ESC_P = b"\x1bP"

WEIGHT_REQUESTS: Dict[ProtocolVariant, bytes] = {
    ProtocolVariant.PRT2: ESC_P,
}

_VALUE = r"(?P<value>\d+(?:\.\d*)?|\.\d+)"
_UNIT = r"(?P<unit>kg|g)"

# STX/ETX and whitespace around a frame are noise
_FRAME_NOISE = " \t\r\n\x02\x03"


@dataclass(frozen=True)
class Grammar:
    name: str
    pattern: "re.Pattern[str]"
    stable: Callable[["re.Match[str]"], bool]

    def build(self, match: "re.Match[str]", line: str) -> WeightReading:
        sign = -1.0 if match.group("sign") == "-" else 1.0
        unit = match.group("unit").lower()
        value = float(match.group("value")) * sign
        weight_kg = value / 1000.0 if unit == "g" else value
        return WeightReading(weight_kg=weight_kg, stable=self.stable(match), unit=unit, raw=line)


STATUS_FRAME = Grammar(
    "status",
    re.compile(r"(?P<status>ST|US),(?P<kind>GS|NT),(?P<sign>[+-])\s*" + _VALUE + r"\s*" + _UNIT, re.IGNORECASE),
    lambda m: m.group("status").upper() == "ST",
)

PRINT_FRAME = Grammar(
    "print",
    re.compile(r"P,(?P<sign>[+-])\s*" + _VALUE + r"\s*" + _UNIT, re.IGNORECASE),
    lambda m: True,
)

BARE_FRAME = Grammar(
    "bare",
    re.compile(r"(?P<sign>[+-])?\s*" + _VALUE + r"\s*" + _UNIT, re.IGNORECASE),
    lambda m: True,
)

GRAMMARS: Dict[ProtocolVariant, Tuple[Grammar, ...]] = {
    ProtocolVariant.PRT1: (),
    ProtocolVariant.PRT2: (STATUS_FRAME, PRINT_FRAME, BARE_FRAME),
    ProtocolVariant.PRT3: (),
    ProtocolVariant.PRT4: (),
    ProtocolVariant.PRT5: (),
}


def is_supported(variant: ProtocolVariant) -> bool:
    return bool(GRAMMARS.get(variant))


def weight_request(variant: ProtocolVariant) -> Optional[bytes]:
    """Command bytes that make the scale answer with its current weight."""
    return WEIGHT_REQUESTS.get(variant)


def _as_text(fragment: Union[str, bytes]) -> str:
    if isinstance(fragment, bytes):
        return fragment.decode("ascii", errors="ignore")
    return fragment


def decode(fragment: Union[str, bytes], variant: ProtocolVariant = ProtocolVariant.PRT2) -> WeightReading:
    """Decode the first line of ``fragment`` that forms a complete frame.

    Raises:
        ParseFailure: when no line matches, or the variant has no decoder.
    """
    grammars = GRAMMARS.get(variant, ())
    if not grammars:
        raise ParseFailure(f"Protocol {variant.value} has no decoder")
    text = _as_text(fragment)
    for line in text.splitlines():
        line = line.strip(_FRAME_NOISE)
        if not line:
            continue
        for grammar in grammars:
            match = grammar.pattern.fullmatch(line)
            if match:
                try:
                    return grammar.build(match, line)
                except ValueError as e:
                    raise ParseFailure(f"Bad {grammar.name} frame {line!r}: {e}")
    raise ParseFailure(f"Unrecognised frame {text!r}")


def parse(fragment: Union[str, bytes], variant: ProtocolVariant = ProtocolVariant.PRT2) -> Optional[WeightReading]:
    """Like ``decode`` but returns None for anything that is not a frame."""
    try:
        return decode(fragment, variant)
    except ParseFailure:
        return None


def format_frame(reading: WeightReading, kind: str = "GS") -> str:
    """Render a reading the way a PRT2 scale would send it.

    Weights are rounded to whole grams, the resolution the scale reports at,
    so parsing the frame back gives the reading rounded to 0.001 kg.
    """
    status = "ST" if reading.stable else "US"
    sign = "-" if reading.weight_kg < 0 else "+"
    magnitude = abs(reading.weight_kg)
    if reading.unit == "g":
        body = f"{magnitude * 1000:05.0f}g"
    else:
        body = f"{magnitude:06.3f}kg"
    return f"{status},{kind},{sign}{body}"


class FrameBuffer:
    """Reassembles CR/LF terminated frames from arbitrary byte chunks."""

    _TERMINATORS = re.compile(r"[\r\n]+")

    def __init__(self, max_size: int = 256) -> None:
        self.max_size = max_size
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def clear(self) -> None:
        self._pending = ""

    def feed(self, chunk: Union[str, bytes]) -> List[str]:
        self._pending += _as_text(chunk)
        *lines, self._pending = self._TERMINATORS.split(self._pending)
        if len(self._pending) > self.max_size:
            # no terminator in sight, keep only the tail
            self._pending = self._pending[-self.max_size:]
        return [line for line in lines if line.strip(_FRAME_NOISE)]
