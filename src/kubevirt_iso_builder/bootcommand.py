"""Boot command parsing.

A boot command is typed into the VM console character by character.
Angle-bracket tokens name special keys (``<enter>``, ``<f2>``), hold or
release modifiers (``<leftCtrlOn>``, ``<leftCtrlOff>``) or pause
(``<wait>``, ``<wait5>``, ``<wait1m30s>``). Tokens that are not
recognised are typed literally.
"""

from dataclasses import dataclass
from datetime import timedelta

from .config import parse_duration

SPECIAL_KEYS: dict[str, int] = {
    "enter": 0xFF0D,
    "return": 0xFF0D,
    "esc": 0xFF1B,
    "bs": 0xFF08,
    "del": 0xFFFF,
    "tab": 0xFF09,
    "spacebar": 0x0020,
    "insert": 0xFF63,
    "home": 0xFF50,
    "end": 0xFF57,
    "pageup": 0xFF55,
    "pagedown": 0xFF56,
    "left": 0xFF51,
    "up": 0xFF52,
    "right": 0xFF53,
    "down": 0xFF54,
    "menu": 0xFF67,
}
SPECIAL_KEYS.update({f"f{n}": 0xFFBE + n - 1 for n in range(1, 13)})

MODIFIER_KEYS: dict[str, int] = {
    "leftshift": 0xFFE1,
    "rightshift": 0xFFE2,
    "leftctrl": 0xFFE3,
    "rightctrl": 0xFFE4,
    "leftalt": 0xFFE9,
    "rightalt": 0xFFEA,
    "leftsuper": 0xFFEB,
    "rightsuper": 0xFFEC,
}

SHIFT = MODIFIER_KEYS["leftshift"]
SHIFTED_CHARACTERS = set('~!@#$%^&*()_+{}|:"<>?')

# Latin-1 keysyms equal their code points; beyond that X11 uses 0x01000000 + code point
LATIN1_MAX = 0xFF
UNICODE_KEYSYM_OFFSET = 0x01000000

CONTROL_CHARACTERS = {
    "\n": SPECIAL_KEYS["enter"],
    "\r": SPECIAL_KEYS["enter"],
    "\t": SPECIAL_KEYS["tab"],
}


@dataclass(frozen=True)
class KeyPress:
    """Press and release a key, holding Shift around it if needed."""

    keysym: int
    shift: bool = False


@dataclass(frozen=True)
class KeyDown:
    keysym: int


@dataclass(frozen=True)
class KeyUp:
    keysym: int


@dataclass(frozen=True)
class Wait:
    seconds: float


Action = KeyPress | KeyDown | KeyUp | Wait


def character_action(char: str) -> KeyPress:
    if char in CONTROL_CHARACTERS:
        return KeyPress(CONTROL_CHARACTERS[char])
    codepoint = ord(char)
    if codepoint > LATIN1_MAX:
        # X11 Unicode keysym, the server resolves case
        return KeyPress(UNICODE_KEYSYM_OFFSET + codepoint)
    shift = char.isupper() or char in SHIFTED_CHARACTERS
    return KeyPress(codepoint, shift=shift)


def wait_seconds(token: str) -> float | None:
    """Duration of a ``wait`` token, or None if it is not one."""
    lowered = token.lower()
    if not lowered.startswith("wait"):
        return None
    rest = token[4:]
    if not rest:
        return 1.0
    parsed = parse_duration(rest)
    if isinstance(parsed, timedelta):
        return parsed.total_seconds()
    return None


def token_actions(token: str) -> list[Action] | None:
    """Actions for the text between angle brackets, or None if unknown."""
    lowered = token.lower()

    if lowered in SPECIAL_KEYS:
        return [KeyPress(SPECIAL_KEYS[lowered])]

    if lowered in MODIFIER_KEYS:
        return [KeyPress(MODIFIER_KEYS[lowered])]
    if lowered.endswith("on") and lowered[:-2] in MODIFIER_KEYS:
        return [KeyDown(MODIFIER_KEYS[lowered[:-2]])]
    if lowered.endswith("off") and lowered[:-3] in MODIFIER_KEYS:
        return [KeyUp(MODIFIER_KEYS[lowered[:-3]])]

    seconds = wait_seconds(token)
    if seconds is not None:
        return [Wait(seconds)]

    return None


def parse(command: str) -> list[Action]:
    """Turn a boot command string into key and wait actions."""
    actions: list[Action] = []
    i = 0
    while i < len(command):
        char = command[i]
        if char == "<":
            end = command.find(">", i + 1)
            if end != -1:
                special = token_actions(command[i + 1 : end])
                if special is not None:
                    actions.extend(special)
                    i = end + 1
                    continue
        actions.append(character_action(char))
        i += 1
    return actions
