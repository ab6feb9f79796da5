"""Tests for boot command parsing."""

import pytest

from kubevirt_iso_builder.bootcommand import (
    MODIFIER_KEYS,
    SPECIAL_KEYS,
    KeyDown,
    KeyPress,
    KeyUp,
    Wait,
    character_action,
    parse,
    wait_seconds,
)


class TestParse:
    """Tests for parse."""

    def test_plain_text(self) -> None:
        """Test characters become key presses with Shift where needed."""
        assert parse("aB!") == [KeyPress(ord("a")), KeyPress(ord("B"), shift=True), KeyPress(ord("!"), shift=True)]

    def test_special_keys_case_insensitive(self) -> None:
        """Test named keys in any case."""
        assert parse("<Enter><tab><F2>") == [
            KeyPress(SPECIAL_KEYS["enter"]),
            KeyPress(SPECIAL_KEYS["tab"]),
            KeyPress(0xFFBF),
        ]

    def test_control_characters(self) -> None:
        """Test newlines and tabs map to Enter and Tab."""
        assert parse("\t\n") == [KeyPress(SPECIAL_KEYS["tab"]), KeyPress(SPECIAL_KEYS["enter"])]

    def test_modifier_hold(self) -> None:
        """Test On/Off tokens hold and release modifiers."""
        ctrl = MODIFIER_KEYS["leftctrl"]

        assert parse("<leftCtrlOn>c<leftCtrlOff>") == [KeyDown(ctrl), KeyPress(ord("c")), KeyUp(ctrl)]

    @pytest.mark.parametrize(
        ("token", "seconds"),
        [("wait", 1.0), ("wait5", 5.0), ("wait10s", 10.0), ("wait1m30s", 90.0), ("wait500ms", 0.5)],
    )
    def test_waits(self, token: str, seconds: float) -> None:
        """Test wait tokens."""
        assert parse(f"<{token}>") == [Wait(seconds)]

    def test_unknown_token_typed_literally(self) -> None:
        """Test unrecognised tokens are typed as text."""
        actions = parse("<foo>")

        assert len(actions) == 5
        assert actions[0] == KeyPress(ord("<"), shift=True)
        assert actions[-1] == KeyPress(ord(">"), shift=True)

    def test_unclosed_bracket(self) -> None:
        """Test a lone '<' is typed."""
        assert parse("<ent") == [KeyPress(ord("<"), shift=True)] + [KeyPress(ord(c)) for c in "ent"]

    def test_typical_installer_command(self) -> None:
        """Test a realistic kernel command line edit."""
        actions = parse("<up><wait>e<wait><down><down><end> inst.ks=hd:LABEL=OEMDRV:/ks.cfg<leftCtrlOn>x<leftCtrlOff>")

        assert actions[0] == KeyPress(SPECIAL_KEYS["up"])
        assert actions[1] == Wait(1.0)
        assert actions[-3:] == [
            KeyDown(MODIFIER_KEYS["leftctrl"]),
            KeyPress(ord("x")),
            KeyUp(MODIFIER_KEYS["leftctrl"]),
        ]


class TestWaitSeconds:
    """Tests for wait_seconds."""

    def test_not_a_wait(self) -> None:
        """Test other tokens are rejected."""
        assert wait_seconds("enter") is None
        assert wait_seconds("waitforever") is None


class TestCharacterAction:
    """Tests for character_action."""

    def test_latin1_uses_code_point(self) -> None:
        """Test Latin-1 characters map straight to their keysyms."""
        assert character_action("é") == KeyPress(0xE9)
        assert character_action("Ü") == KeyPress(0xDC, shift=True)

    @pytest.mark.parametrize(("char", "keysym"), [("ж", 0x01000436), ("€", 0x010020AC), ("中", 0x01004E2D)])
    def test_beyond_latin1_uses_unicode_keysym(self, char: str, keysym: int) -> None:
        """Test other characters use X11 Unicode keysyms without Shift."""
        assert character_action(char) == KeyPress(keysym)
