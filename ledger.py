import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

# 18 digits always fit a signed 64-bit SQLite INTEGER
MAX_AMOUNT_DIGITS = 18

AMOUNT_FIRST_RE = re.compile(r"^([+-]?)([0-9]{1,%d})\s+(.+)$" % MAX_AMOUNT_DIGITS)
LABEL_FIRST_RE = re.compile(r"^(.+?)\s*([+-])([0-9]{1,%d})$" % MAX_AMOUNT_DIGITS)

FORMAT_HELP = (
    "❌ Invalid transaction format. Expected one entry per line, like:\n"
    "rent -3000\n"
    "+4000 salary\n"
    "-50 coffee\n"
    "phone bill -150"
)


class Grammar(Enum):
    AMOUNT_FIRST = "amount_first"
    LABEL_FIRST = "label_first"


@dataclass(frozen=True)
class ParsedTransaction:
    grammar: Grammar
    label: str
    sign: str  # "positive" / "negative"
    amount: int

    @property
    def signed_amount(self) -> int:
        return -self.amount if self.sign == "negative" else self.amount


@dataclass(frozen=True)
class Entry:
    label: str
    amount: int
    created_at: datetime = field(default_factory=datetime.now)


# --- Parsing ---
def parse_message(text: str) -> Optional[ParsedTransaction]:
    """Parse one line into a transaction.

    Amount-first ("-3000 rent") is tried before label-first ("rent -3000"),
    so a line matching both is always read as amount-first.
    Returns None when neither grammar matches.
    """
    text = text.strip()

    match = AMOUNT_FIRST_RE.match(text)
    if match:
        sign_char, digits, label = match.groups()
        label = label.strip()
        if label:
            return ParsedTransaction(
                grammar=Grammar.AMOUNT_FIRST,
                label=label,
                sign="negative" if sign_char == "-" else "positive",
                amount=int(digits),
            )

    match = LABEL_FIRST_RE.match(text)
    if match:
        label, sign_char, digits = match.groups()
        label = label.strip()
        if label:
            return ParsedTransaction(
                grammar=Grammar.LABEL_FIRST,
                label=label,
                sign="negative" if sign_char == "-" else "positive",
                amount=int(digits),
            )

    return None


def parse_entries(text: str) -> Optional[List[ParsedTransaction]]:
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return None

    parsed = []
    for line in lines:
        transaction = parse_message(line)
        if transaction is None:
            return None
        parsed.append(transaction)
    return parsed


def normalize_name(raw: str) -> str:
    return "_".join(raw.split())


# --- Aggregation ---
def balance(entries: Iterable[Entry]) -> int:
    return sum(entry.amount for entry in entries)


# --- Formatting ---
def format_amount(amount: int) -> str:
    sign = "+" if amount >= 0 else "-"
    return f"{sign}{abs(amount):,}"


def render_report(entries: Sequence[Entry]) -> str:
    if not entries:
        return "No entries yet."

    lines = []
    for entry in entries:
        marker = "💰" if entry.amount >= 0 else "💸"
        lines.append(f'{marker} {format_amount(entry.amount)}  "{entry.label}"')

    total = balance(entries)
    trend = "📈" if total >= 0 else "📉"
    return "\n".join(lines) + f"\n\n{trend} Total: {format_amount(total)}"


def render_account(name: str, entries: Sequence[Entry]) -> str:
    if not entries:
        return f'📋 Account "{name}"\n{render_report(entries)}'
    return f'📋 Account "{name}"\n\n{render_report(entries)}'


def render_account_list(balances: Sequence[Tuple[str, int]], current: Optional[str]) -> str:
    if not balances:
        return "No accounts found. Create one with /new <account_name>"

    text = "📋 Available accounts:\n\n"
    for name, total in balances:
        indicator = "👉 " if name == current else "   "
        text += f"{indicator}{name} ({format_amount(total)})\n"

    text += f"\nCurrent: {current or 'None'}\nUse /switch <account_name> to switch"
    return text


def not_found_message(name: str) -> str:
    return f'❌ Account "{name}" not found. Use /list to see available accounts.'
