import pytest

from ledger import (
    Entry,
    Grammar,
    MAX_AMOUNT_DIGITS,
    balance,
    format_amount,
    normalize_name,
    not_found_message,
    parse_entries,
    parse_message,
    render_account,
    render_account_list,
    render_report,
)


class TestParseMessage:
    def test_label_first(self):
        parsed = parse_message("rent -3000")
        assert parsed.grammar == Grammar.LABEL_FIRST
        assert parsed.label == "rent"
        assert parsed.signed_amount == -3000

    def test_amount_first_with_plus(self):
        parsed = parse_message("+4000 salary")
        assert parsed.grammar == Grammar.AMOUNT_FIRST
        assert parsed.label == "salary"
        assert parsed.signed_amount == 4000

    def test_amount_first_defaults_to_positive(self):
        parsed = parse_message("3000 for rent")
        assert parsed.label == "for rent"
        assert parsed.sign == "positive"
        assert parsed.signed_amount == 3000

    def test_amount_first_negative(self):
        parsed = parse_message("-50 coffee")
        assert parsed.label == "coffee"
        assert parsed.amount == 50
        assert parsed.signed_amount == -50

    def test_multi_word_label_first(self):
        parsed = parse_message("pay bills -3000")
        assert parsed.label == "pay bills"
        assert parsed.signed_amount == -3000

    def test_label_first_without_space_before_sign(self):
        parsed = parse_message("rent-3000")
        assert parsed.label == "rent"
        assert parsed.signed_amount == -3000

    def test_label_first_positive(self):
        parsed = parse_message("collected rent +4000")
        assert parsed.label == "collected rent"
        assert parsed.signed_amount == 4000

    def test_label_is_trimmed(self):
        parsed = parse_message("   -25    milk   ")
        assert parsed.label == "milk"
        assert parsed.signed_amount == -25

    def test_amount_first_takes_priority_when_both_match(self):
        parsed = parse_message("100 apples -20")
        assert parsed.grammar == Grammar.AMOUNT_FIRST
        assert parsed.label == "apples -20"
        assert parsed.signed_amount == 100

    def test_sign_applied_once(self):
        assert parse_message("refund -0").signed_amount == 0
        assert parse_message("-7 x").signed_amount == -7

    @pytest.mark.parametrize("text", [
        "not a transaction",
        "",
        "   ",
        "3000",
        "-3000",
        "rent 3000",
        "rent -",
        "rent -30.5",
        "+ 30 rent",
    ])
    def test_rejected(self, text):
        assert parse_message(text) is None

    @pytest.mark.parametrize("text", ["\x00", "💸💸💸", "-" * 500, "+-+-+-", "a\tb\nc"])
    def test_never_raises(self, text):
        parse_message(text)

    def test_longest_amount_accepted(self):
        digits = "9" * MAX_AMOUNT_DIGITS
        assert parse_message(f"-{digits} debt").signed_amount == -int(digits)
        assert parse_message(f"debt +{digits}").signed_amount == int(digits)

    @pytest.mark.parametrize("text", [
        "1" * (MAX_AMOUNT_DIGITS + 1) + " salary",
        "salary +" + "1" * (MAX_AMOUNT_DIGITS + 1),
        "bonus +99999999999999999999",
        "1" * 5000 + " x",
        "x -" + "1" * 5000,
    ])
    def test_oversized_amount_rejected(self, text):
        assert parse_message(text) is None

    @pytest.mark.parametrize("sign,digits,label", [
        ("", "1", "a"),
        ("+", "15", "bread"),
        ("-", "1000000", "new car"),
        ("-", "007", "bond"),
    ])
    def test_amount_first_property(self, sign, digits, label):
        parsed = parse_message(f"{sign}{digits} {label}")
        expected = -int(digits) if sign == "-" else int(digits)
        assert parsed.label == label
        assert parsed.signed_amount == expected

    @pytest.mark.parametrize("sign,digits,label", [
        ("+", "1", "a"),
        ("-", "15", "bread"),
        ("-", "1000000", "new car"),
    ])
    def test_label_first_property(self, sign, digits, label):
        parsed = parse_message(f"{label} {sign}{digits}")
        expected = -int(digits) if sign == "-" else int(digits)
        assert parsed.label == label
        assert parsed.signed_amount == expected


class TestParseEntries:
    def test_one_entry_per_line(self):
        parsed = parse_entries("milk -25\n\nbread -15\n+100 gift")
        assert [(p.label, p.signed_amount) for p in parsed] == [
            ("milk", -25),
            ("bread", -15),
            ("gift", 100),
        ]

    def test_any_bad_line_rejects_whole_message(self):
        assert parse_entries("milk -25\nhello there") is None

    def test_blank_message(self):
        assert parse_entries("\n  \n") is None


def test_balance():
    assert balance([]) == 0
    assert balance([Entry("milk", -25), Entry("bread", -15)]) == -40
    assert balance([Entry("salary", 4000), Entry("rent", -3000)]) == 1000


def test_format_amount():
    assert format_amount(0) == "+0"
    assert format_amount(3000) == "+3,000"
    assert format_amount(-1234567) == "-1,234,567"
    assert format_amount(-40) == "-40"


class TestRenderReport:
    def test_empty_account(self):
        text = render_report([])
        assert text == "No entries yet."
        assert "Total" not in text

    def test_entries_and_total(self):
        entries = [Entry("milk", -25), Entry("bread", -15)]
        assert render_report(entries) == (
            '💸 -25  "milk"\n'
            '💸 -15  "bread"\n'
            "\n"
            "📉 Total: -40"
        )

    def test_positive_total(self):
        entries = [Entry("salary", 4000), Entry("rent", -3000)]
        assert render_report(entries) == (
            '💰 +4,000  "salary"\n'
            '💸 -3,000  "rent"\n'
            "\n"
            "📈 Total: +1,000"
        )

    def test_zero_entry_is_positive(self):
        assert render_report([Entry("nothing", 0)]).startswith('💰 +0  "nothing"')

    def test_idempotent(self):
        entries = [Entry("a", 1), Entry("b", -2)]
        assert render_report(entries) == render_report(entries)

    def test_entry_count_matches(self):
        entries = [Entry(f"item {i}", i - 5) for i in range(12)]
        text = render_report(entries)
        lines = text.split("\n\n")[0].splitlines()
        assert len(lines) == 12
        assert text.endswith(f"Total: {format_amount(balance(entries))}")

    def test_render_account_titles(self):
        assert render_account("food", []) == '📋 Account "food"\nNo entries yet.'
        assert render_account("food", [Entry("milk", -25)]).startswith('📋 Account "food"\n\n💸 -25')


def test_render_account_list():
    text = render_account_list([("food", -40), ("salary", 4000)], "food")
    assert "👉 food (-40)" in text
    assert "   salary (+4,000)" in text
    assert text.endswith("Current: food\nUse /switch <account_name> to switch")


def test_render_account_list_without_current():
    text = render_account_list([("food", 0)], None)
    assert "Current: None" in text


def test_render_account_list_empty():
    assert render_account_list([], None).startswith("No accounts found")


def test_not_found_message():
    assert not_found_message("ghost") == '❌ Account "ghost" not found. Use /list to see available accounts.'


def test_normalize_name():
    assert normalize_name("my  groceries ") == "my_groceries"
    assert normalize_name("   ") == ""
