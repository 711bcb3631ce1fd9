"""CLI parsing and display helpers."""

from polybook.main import build_parser
from polybook.ui.formatting import format_money, format_price, format_qty, make_bar


class TestParser:
    def test_default_is_ui(self):
        args = build_parser().parse_args([])

        assert args.command is None
        assert args.token == []

    def test_ui_tokens_repeat(self):
        args = build_parser().parse_args(["ui", "--token", "a", "--token", "b", "--levels", "8"])

        assert args.token == ["a", "b"]
        assert args.levels == 8

    def test_book(self):
        args = build_parser().parse_args(["--log-level", "DEBUG", "book", "t1", "t2", "--interval", "0.5"])

        assert args.tokens == ["t1", "t2"]
        assert args.interval == 0.5
        assert args.log_level == "DEBUG"

    def test_fills(self):
        args = build_parser().parse_args(["fills", "--address", "0xabc", "--signature", "0xsig", "--timestamp", "17"])

        assert args.address == "0xabc"
        assert args.nonce == 0


class TestFormatting:
    def test_format_qty(self):
        assert format_qty(2_500_000) == "2.5M"
        assert format_qty(1500) == "1.5K"
        assert format_qty(12) == "12.0"
        assert format_qty(0.25) == "0.25"
        assert format_qty(0) == ""

    def test_format_price_in_cents(self):
        assert format_price(0.455) == "45.5¢"
        assert format_price(None) == "-"

    def test_format_money(self):
        assert format_money(1234567.8) == "$1,234,568"
        assert format_money(None) == "$0"

    def test_make_bar(self):
        assert make_bar(5, 10, 10, "red").plain == "█████     "
        assert make_bar(5, 0, 4, "red").plain == "    "
