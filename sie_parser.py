#!/usr/bin/env python3
"""Parse SIE accounting exports into an in-memory ledger document.

The parser is intentionally lenient at line level: a malformed record only loses
the fields it cannot parse, and every such loss is recorded as a diagnostic on the
document instead of stopping the parse. Only caller misuse (empty or oversized
input, unreadable files) raises ParseError.
"""

from __future__ import annotations

import codecs
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

MAX_INPUT_SIZE = 50 * 1024 * 1024
SIE_CODEPAGE = "cp437"

COMMENT_MARKER = ";"
KEYWORD_MARKER = "#"
BLOCK_OPEN = "{"
BLOCK_CLOSE = "}"
VERIFICATION_KEYWORD = "#VER"
TRANSACTION_KEYWORD = "#TRANS"

SIE_MARKERS = ("#FLAGGA", "#SIETYP", "#KONTO", "#VER")

ACCOUNT_TYPES = {
    "T": "asset",
    "S": "liability",
    "I": "income",
    "K": "cost",
}

LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")
DECIMAL_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)$")
YEAR_INDEX_RE = re.compile(r"^[+-]?\d+$")
DATE_RE = re.compile(r"^\d{8}$")


class ParseError(RuntimeError):
    pass


@dataclass
class FinancialYear:
    year_index: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass
class Account:
    number: str
    name: str = ""
    account_type: Optional[str] = None
    sru_code: Optional[str] = None


@dataclass
class Dimension:
    number: str
    name: str = ""


@dataclass
class DimensionObject:
    dimension_number: str
    object_number: str
    name: str = ""


@dataclass
class DimensionReference:
    dimension_number: str
    object_number: str


@dataclass
class Transaction:
    account_number: str
    amount: Optional[Decimal] = None
    transaction_date: Optional[date] = None
    description: Optional[str] = None
    quantity: Optional[Decimal] = None
    created_by: Optional[str] = None
    dimensions: List[DimensionReference] = field(default_factory=list)


@dataclass
class Verification:
    series: Optional[str] = None
    number: Optional[str] = None
    verification_date: Optional[date] = None
    description: Optional[str] = None
    registration_date: Optional[date] = None
    registered_by: Optional[str] = None
    transactions: List[Transaction] = field(default_factory=list)


@dataclass
class Balance:
    year_index: int
    account_number: str
    amount: Decimal
    quantity: Optional[Decimal] = None


@dataclass
class Result(Balance):
    pass


@dataclass
class Diagnostic:
    line_number: int
    keyword: str
    message: str


@dataclass
class Document:
    version: Optional[str] = None
    format: str = "PC8"
    flag: Optional[str] = None
    program_name: Optional[str] = None
    program_version: Optional[str] = None
    generated_date: Optional[date] = None
    generated_by: Optional[str] = None

    company_name: Optional[str] = None
    company_id: Optional[str] = None
    company_number: Optional[str] = None
    address_contact: Optional[str] = None
    address_street: Optional[str] = None
    address_postal: Optional[str] = None
    address_phone: Optional[str] = None
    currency: str = "SEK"
    tax_year: Optional[str] = None
    chart_of_accounts_type: Optional[str] = None

    financial_years: List[FinancialYear] = field(default_factory=list)
    # Keyed by account number; dict order is file order.
    accounts: Dict[str, Account] = field(default_factory=dict)
    dimensions: List[Dimension] = field(default_factory=list)
    objects: List[DimensionObject] = field(default_factory=list)
    verifications: List[Verification] = field(default_factory=list)
    opening_balances: List[Balance] = field(default_factory=list)
    closing_balances: List[Balance] = field(default_factory=list)
    results: List[Result] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


@dataclass
class LineContext:
    document: Document
    line_number: int
    keyword: str

    def skip(self, message: str) -> None:
        self.document.diagnostics.append(Diagnostic(self.line_number, self.keyword, message))
        logger.debug(f"line {self.line_number} ({self.keyword or 'no keyword'}): {message}")


# Block state machine. HeaderSeen and InsideBlock carry the active verification;
# Outside has none, so a transaction line there can only be ignored.
@dataclass(frozen=True)
class Outside:
    pass


@dataclass(frozen=True)
class HeaderSeen:
    verification: Verification


@dataclass(frozen=True)
class InsideBlock:
    verification: Verification


BlockState = Union[Outside, HeaderSeen, InsideBlock]
OUTSIDE = Outside()


def tokenize_line(line: str) -> List[str]:
    """Split a record line on whitespace, keeping double-quoted spans together.

    Quote characters stay in the emitted token. An unterminated quote runs to the end
    of the line.
    """
    tokens: List[str] = []
    current: List[str] = []
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
            current.append(ch)
        elif ch.isspace() and not in_quotes:
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(ch)
    if current:
        tokens.append("".join(current))
    return tokens


def unquote(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def parse_decimal(raw: str) -> Optional[Decimal]:
    token = unquote(raw)
    if not DECIMAL_RE.fullmatch(token):
        return None
    try:
        return Decimal(token)
    except InvalidOperation:
        return None


def parse_year_index(raw: str) -> Optional[int]:
    token = unquote(raw)
    if not YEAR_INDEX_RE.fullmatch(token):
        return None
    return int(token)


def parse_date(raw: str) -> Optional[date]:
    token = unquote(raw)
    if not DATE_RE.fullmatch(token):
        return None
    try:
        return datetime.strptime(token, "%Y%m%d").date()
    except ValueError:
        return None


def token_at(tokens: List[str], index: int) -> Optional[str]:
    return tokens[index] if len(tokens) > index else None


def has_min_tokens(tokens: List[str], count: int, ctx: LineContext) -> bool:
    if len(tokens) < count:
        ctx.skip(f"expected at least {count - 1} field(s), got {len(tokens) - 1}")
        return False
    return True


def optional_date(tokens: List[str], index: int, label: str, ctx: LineContext) -> Optional[date]:
    raw = token_at(tokens, index)
    if raw is None or unquote(raw) == "":
        return None
    parsed = parse_date(raw)
    if parsed is None:
        ctx.skip(f"ignored malformed {label} {raw!r}")
    return parsed


def optional_decimal(tokens: List[str], index: int, label: str, ctx: LineContext) -> Optional[Decimal]:
    raw = token_at(tokens, index)
    if raw is None or unquote(raw) == "":
        return None
    parsed = parse_decimal(raw)
    if parsed is None:
        ctx.skip(f"ignored malformed {label} {raw!r}")
    return parsed


def optional_text(tokens: List[str], index: int) -> Optional[str]:
    raw = token_at(tokens, index)
    return unquote(raw) if raw is not None else None


def handle_flag(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if has_min_tokens(tokens, 2, ctx):
        doc.flag = unquote(tokens[1])


def handle_format(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if has_min_tokens(tokens, 2, ctx):
        doc.format = unquote(tokens[1])


def handle_sie_type(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if has_min_tokens(tokens, 2, ctx):
        doc.version = unquote(tokens[1])


def handle_program(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if not has_min_tokens(tokens, 2, ctx):
        return
    doc.program_name = unquote(tokens[1])
    doc.program_version = optional_text(tokens, 2)


def handle_generated(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if not has_min_tokens(tokens, 2, ctx):
        return
    doc.generated_date = optional_date(tokens, 1, "generation date", ctx)
    doc.generated_by = optional_text(tokens, 2)


def handle_company_name(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if has_min_tokens(tokens, 2, ctx):
        doc.company_name = unquote(tokens[1])


def handle_company_id(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if has_min_tokens(tokens, 2, ctx):
        doc.company_id = unquote(tokens[1])


def handle_company_number(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if has_min_tokens(tokens, 2, ctx):
        doc.company_number = unquote(tokens[1])


def handle_address(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if not has_min_tokens(tokens, 2, ctx):
        return
    doc.address_contact = optional_text(tokens, 1)
    doc.address_street = optional_text(tokens, 2)
    doc.address_postal = optional_text(tokens, 3)
    doc.address_phone = optional_text(tokens, 4)


def handle_financial_year(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if not has_min_tokens(tokens, 2, ctx):
        return
    year_index = parse_year_index(tokens[1])
    if year_index is None:
        ctx.skip(f"malformed year index {tokens[1]!r}")
        return
    doc.financial_years.append(
        FinancialYear(
            year_index=year_index,
            start_date=optional_date(tokens, 2, "start date", ctx),
            end_date=optional_date(tokens, 3, "end date", ctx),
        )
    )


def handle_tax_year(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if has_min_tokens(tokens, 2, ctx):
        doc.tax_year = unquote(tokens[1])


def handle_currency(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if has_min_tokens(tokens, 2, ctx):
        doc.currency = unquote(tokens[1])


def handle_chart_type(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if has_min_tokens(tokens, 2, ctx):
        doc.chart_of_accounts_type = unquote(tokens[1])


def handle_account(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if not has_min_tokens(tokens, 2, ctx):
        return
    number = unquote(tokens[1])
    name = optional_text(tokens, 2) or ""
    existing = doc.accounts.get(number)
    if existing is not None:
        existing.name = name
        return
    doc.accounts[number] = Account(number=number, name=name)


def lookup_account(doc: Document, raw_number: str, ctx: LineContext) -> Optional[Account]:
    account = doc.accounts.get(unquote(raw_number))
    if account is None:
        ctx.skip(f"account {unquote(raw_number)!r} is not defined")
    return account


def handle_account_type(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if not has_min_tokens(tokens, 3, ctx):
        return
    account = lookup_account(doc, tokens[1], ctx)
    if account is None:
        return
    account_type = unquote(tokens[2]).upper()
    if account_type not in ACCOUNT_TYPES:
        ctx.skip(f"unknown account type {tokens[2]!r}")
        return
    account.account_type = account_type


def handle_sru_code(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if not has_min_tokens(tokens, 3, ctx):
        return
    account = lookup_account(doc, tokens[1], ctx)
    if account is not None:
        account.sru_code = unquote(tokens[2])


def handle_dimension(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if not has_min_tokens(tokens, 2, ctx):
        return
    doc.dimensions.append(Dimension(number=unquote(tokens[1]), name=optional_text(tokens, 2) or ""))


def handle_object(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    if not has_min_tokens(tokens, 3, ctx):
        return
    doc.objects.append(
        DimensionObject(
            dimension_number=unquote(tokens[1]),
            object_number=unquote(tokens[2]),
            name=optional_text(tokens, 3) or "",
        )
    )


def parse_balance_fields(tokens: List[str], ctx: LineContext) -> Optional[Tuple[int, str, Decimal, Optional[Decimal]]]:
    if not has_min_tokens(tokens, 4, ctx):
        return None
    year_index = parse_year_index(tokens[1])
    if year_index is None:
        ctx.skip(f"malformed year index {tokens[1]!r}")
        return None
    amount = parse_decimal(tokens[3])
    if amount is None:
        ctx.skip(f"malformed amount {tokens[3]!r}")
        return None
    quantity = optional_decimal(tokens, 4, "quantity", ctx)
    return year_index, unquote(tokens[2]), amount, quantity


def handle_opening_balance(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    fields = parse_balance_fields(tokens, ctx)
    if fields is not None:
        doc.opening_balances.append(Balance(*fields))


def handle_closing_balance(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    fields = parse_balance_fields(tokens, ctx)
    if fields is not None:
        doc.closing_balances.append(Balance(*fields))


def handle_result(doc: Document, tokens: List[str], ctx: LineContext) -> None:
    fields = parse_balance_fields(tokens, ctx)
    if fields is not None:
        doc.results.append(Result(*fields))


RecordHandler = Callable[[Document, List[str], LineContext], None]

RECORD_HANDLERS: Dict[str, RecordHandler] = {
    "#FLAGGA": handle_flag,
    "#FORMAT": handle_format,
    "#SIETYP": handle_sie_type,
    "#PROGRAM": handle_program,
    "#GEN": handle_generated,
    "#FNAMN": handle_company_name,
    "#FNR": handle_company_id,
    "#ORGNR": handle_company_number,
    "#ADRESS": handle_address,
    "#RAR": handle_financial_year,
    "#TAXAR": handle_tax_year,
    "#VALUTA": handle_currency,
    "#KPTYP": handle_chart_type,
    "#KONTO": handle_account,
    "#KTYP": handle_account_type,
    "#SRU": handle_sru_code,
    "#DIM": handle_dimension,
    "#OBJEKT": handle_object,
    "#IB": handle_opening_balance,
    "#UB": handle_closing_balance,
    "#RES": handle_result,
}


def build_verification(tokens: List[str], ctx: LineContext) -> Verification:
    series = optional_text(tokens, 1)
    number = optional_text(tokens, 2)
    if series is None or number is None:
        ctx.skip("verification header without series or number")
    return Verification(
        series=series,
        number=number,
        verification_date=optional_date(tokens, 3, "verification date", ctx),
        description=optional_text(tokens, 4),
        registration_date=optional_date(tokens, 5, "registration date", ctx),
        registered_by=optional_text(tokens, 6),
    )


def split_dimension_group(
    tokens: List[str], ctx: LineContext
) -> Tuple[List[DimensionReference], List[str]]:
    """Take the leading {dim obj ...} group off a transaction's field tokens.

    Returns the dimension references and the tokens that follow the group.
    """
    if not tokens or not tokens[0].startswith(BLOCK_OPEN):
        return [], tokens

    members: List[str] = []
    remainder: List[str] = []
    closed = False
    for idx, token in enumerate(tokens):
        piece = token[1:] if idx == 0 else token
        # Unquoted pieces close at the first brace; text after it is the next field.
        trailing: Optional[str] = None
        if piece.startswith('"'):
            if piece.endswith(BLOCK_CLOSE):
                piece, trailing = piece[:-1], ""
        elif BLOCK_CLOSE in piece:
            piece, _, trailing = piece.partition(BLOCK_CLOSE)
        if piece:
            members.append(unquote(piece))
        if trailing is not None:
            closed = True
            remainder = ([trailing] if trailing else []) + tokens[idx + 1 :]
            break
    if not closed:
        ctx.skip("unterminated object list")

    if len(members) % 2:
        ctx.skip(f"dropped unpaired object list token {members[-1]!r}")
    references = [
        DimensionReference(dimension_number=members[i], object_number=members[i + 1])
        for i in range(0, len(members) - 1, 2)
    ]
    return references, remainder


def extract_transaction(tokens: List[str], ctx: LineContext) -> Optional[Transaction]:
    # #TRANS account {dim obj ...} amount [date] [text] [quantity] [sign]
    if len(tokens) < 2 or tokens[1].startswith(BLOCK_OPEN):
        ctx.skip("transaction without account number")
        return None

    dimensions, fields = split_dimension_group(tokens[2:], ctx)

    amount_raw = token_at(fields, 0)
    amount = parse_decimal(amount_raw) if amount_raw is not None else None
    if amount_raw is None:
        ctx.skip("missing amount")
    elif amount is None:
        ctx.skip(f"malformed amount {amount_raw!r}")

    return Transaction(
        account_number=unquote(tokens[1]),
        amount=amount,
        transaction_date=optional_date(fields, 1, "transaction date", ctx),
        description=optional_text(fields, 2),
        quantity=optional_decimal(fields, 3, "quantity", ctx),
        created_by=optional_text(fields, 4),
        dimensions=dimensions,
    )


def split_lines(content: str) -> List[Tuple[int, str]]:
    lines: List[Tuple[int, str]] = []
    for line_number, raw_line in enumerate(LINE_BREAK_RE.split(content), start=1):
        line = raw_line.strip()
        if line:
            lines.append((line_number, line))
    return lines


def is_valid_sie_content(content: Optional[str]) -> bool:
    """Cheap check that content looks like SIE at all. Not a grammar check."""
    if not content or not content.strip():
        return False
    return any(marker in content for marker in SIE_MARKERS)


def decode_sie_bytes(raw: bytes) -> str:
    if raw.startswith(codecs.BOM_UTF8):
        encoding = "utf-8-sig"
    elif raw.startswith(codecs.BOM_UTF16_LE) or raw.startswith(codecs.BOM_UTF16_BE):
        encoding = "utf-16"
    else:
        encoding = SIE_CODEPAGE
    try:
        return raw.decode(encoding)
    except UnicodeDecodeError as exc:
        raise ParseError(f"Could not decode SIE content as {encoding}: {exc}") from exc


def check_size(size: int) -> None:
    if size > MAX_INPUT_SIZE:
        raise ParseError(
            f"SIE content is {size} bytes, exceeding the maximum of {MAX_INPUT_SIZE // 1024 // 1024}MB"
        )


def parse_sie_text(content: str) -> Document:
    check_size(len(content))
    if not content.strip():
        raise ParseError("SIE content is empty")

    document = Document()
    state: BlockState = OUTSIDE

    for line_number, line in split_lines(content):
        if line.startswith(COMMENT_MARKER):
            continue

        if line == BLOCK_OPEN:
            if isinstance(state, HeaderSeen):
                state = InsideBlock(state.verification)
            elif isinstance(state, Outside):
                LineContext(document, line_number, BLOCK_OPEN).skip("block opened without a verification header")
            continue

        if line == BLOCK_CLOSE:
            if isinstance(state, Outside):
                LineContext(document, line_number, BLOCK_CLOSE).skip("block closed outside a verification")
            state = OUTSIDE
            continue

        if not line.startswith(KEYWORD_MARKER):
            LineContext(document, line_number, "").skip("line is not a record")
            continue

        tokens = tokenize_line(line)
        keyword = tokens[0]
        ctx = LineContext(document, line_number, keyword)

        if keyword == VERIFICATION_KEYWORD:
            if isinstance(state, InsideBlock):
                ctx.skip("verification header inside an open block; previous block closed")
            verification = build_verification(tokens, ctx)
            document.verifications.append(verification)
            state = HeaderSeen(verification)
            continue

        if keyword == TRANSACTION_KEYWORD and isinstance(state, InsideBlock):
            transaction = extract_transaction(tokens, ctx)
            if transaction is not None:
                state.verification.transactions.append(transaction)
            continue

        handler = RECORD_HANDLERS.get(keyword)
        if handler is None:
            if keyword == TRANSACTION_KEYWORD:
                ctx.skip("transaction outside a verification block")
            else:
                ctx.skip("unknown keyword")
            continue
        handler(document, tokens, ctx)

    logger.info(
        f"Parsed SIE document: {len(document.accounts)} accounts, "
        f"{len(document.verifications)} verifications, {len(document.diagnostics)} diagnostics"
    )
    return document


def parse_sie_bytes(raw: bytes) -> Document:
    check_size(len(raw))
    return parse_sie_text(decode_sie_bytes(raw))


def parse_sie_file(path: Path) -> Document:
    try:
        size = path.stat().st_size
    except FileNotFoundError as exc:
        raise ParseError(f"SIE file not found: {path}") from exc
    except OSError as exc:
        raise ParseError(f"Could not read SIE file {path}: {exc}") from exc
    check_size(size)
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ParseError(f"Could not read SIE file {path}: {exc}") from exc
    return parse_sie_bytes(raw)


def decimal_to_json(value: Optional[Decimal]) -> Optional[str]:
    return format(value, "f") if value is not None else None


def date_to_json(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def balance_to_json(balance: Balance) -> dict:
    return {
        "year_index": balance.year_index,
        "account_number": balance.account_number,
        "amount": decimal_to_json(balance.amount),
        "quantity": decimal_to_json(balance.quantity),
    }


def transaction_to_json(tx: Transaction) -> dict:
    return {
        "account_number": tx.account_number,
        "amount": decimal_to_json(tx.amount),
        "transaction_date": date_to_json(tx.transaction_date),
        "description": tx.description,
        "quantity": decimal_to_json(tx.quantity),
        "created_by": tx.created_by,
        "dimensions": [
            {"dimension_number": ref.dimension_number, "object_number": ref.object_number}
            for ref in tx.dimensions
        ],
    }


def document_to_json(document: Document) -> dict:
    return {
        "version": document.version,
        "format": document.format,
        "flag": document.flag,
        "program": {
            "name": document.program_name,
            "version": document.program_version,
        },
        "generated_date": date_to_json(document.generated_date),
        "generated_by": document.generated_by,
        "company": {
            "name": document.company_name,
            "id": document.company_id,
            "number": document.company_number,
            "address": {
                "contact": document.address_contact,
                "street": document.address_street,
                "postal": document.address_postal,
                "phone": document.address_phone,
            },
        },
        "currency": document.currency,
        "tax_year": document.tax_year,
        "chart_of_accounts_type": document.chart_of_accounts_type,
        "financial_years": [
            {
                "year_index": year.year_index,
                "start_date": date_to_json(year.start_date),
                "end_date": date_to_json(year.end_date),
            }
            for year in document.financial_years
        ],
        "accounts": [
            {
                "number": account.number,
                "name": account.name,
                "type": account.account_type,
                "sru_code": account.sru_code,
            }
            for account in document.accounts.values()
        ],
        "dimensions": [{"number": dim.number, "name": dim.name} for dim in document.dimensions],
        "objects": [
            {
                "dimension_number": obj.dimension_number,
                "object_number": obj.object_number,
                "name": obj.name,
            }
            for obj in document.objects
        ],
        "verifications": [
            {
                "series": ver.series,
                "number": ver.number,
                "date": date_to_json(ver.verification_date),
                "description": ver.description,
                "registration_date": date_to_json(ver.registration_date),
                "registered_by": ver.registered_by,
                "transactions": [transaction_to_json(tx) for tx in ver.transactions],
            }
            for ver in document.verifications
        ],
        "opening_balances": [balance_to_json(b) for b in document.opening_balances],
        "closing_balances": [balance_to_json(b) for b in document.closing_balances],
        "results": [balance_to_json(r) for r in document.results],
        "diagnostics": [
            {"line_number": d.line_number, "keyword": d.keyword, "message": d.message}
            for d in document.diagnostics
        ],
    }
