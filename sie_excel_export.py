"""Render a parsed SIE document as an .xlsx workbook."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import date
from io import BytesIO
from typing import Any, Callable, Iterable, List, Mapping, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.worksheet.worksheet import Worksheet

from sie_parser import Balance, Document, Transaction, Verification

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

ACCOUNT_TYPE_LABELS = {
    "T": "Tillgång (T)",
    "S": "Skuld/Eget kapital (S)",
    "I": "Intäkt (I)",
    "K": "Kostnad (K)",
}

HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_ALIGNMENT = Alignment(horizontal="left")
GROUP_FILL = PatternFill(start_color="D3D3D3", end_color="D3D3D3", fill_type="solid")


@dataclass
class ExportOptions:
    include_accounts: bool = True
    include_verifications: bool = True
    include_opening_balances: bool = True
    include_closing_balances: bool = True
    include_results: bool = True
    include_dimensions: bool = True
    include_objects: bool = True

    show_account_number: bool = True
    show_account_name: bool = True
    show_account_type: bool = True
    show_sru_code: bool = True

    show_verification_series: bool = True
    show_verification_number: bool = True
    show_verification_date: bool = True
    show_verification_description: bool = True
    show_transaction_account: bool = True
    show_transaction_amount: bool = True
    show_transaction_date: bool = True
    show_transaction_description: bool = True
    show_transaction_quantity: bool = True
    show_transaction_dimensions: bool = True

    show_balance_year: bool = True
    show_balance_account: bool = True
    show_balance_amount: bool = True
    show_balance_quantity: bool = True

    account_number_column_name: str = "Kontonummer"
    account_name_column_name: str = "Kontonamn"
    account_type_column_name: str = "Kontotyp"
    sru_code_column_name: str = "SRU-kod"

    verification_series_column_name: str = "Serie"
    verification_number_column_name: str = "Verifikationsnummer"
    verification_date_column_name: str = "Datum"
    verification_description_column_name: str = "Beskrivning"

    transaction_account_column_name: str = "Konto"
    transaction_amount_column_name: str = "Belopp"
    transaction_date_column_name: str = "Transaktionsdatum"
    transaction_description_column_name: str = "Transaktionsbeskrivning"
    transaction_quantity_column_name: str = "Kvantitet"
    transaction_dimensions_column_name: str = "Dimensioner"

    balance_year_column_name: str = "År"
    balance_account_column_name: str = "Konto"
    balance_amount_column_name: str = "Saldo"
    balance_quantity_column_name: str = "Kvantitet"

    dimension_number_column_name: str = "Dimensionsnummer"
    dimension_name_column_name: str = "Dimensionsnamn"
    object_number_column_name: str = "Objektnummer"
    object_name_column_name: str = "Objektnamn"

    include_headers: bool = True
    auto_fit_columns: bool = True
    format_currency: bool = True
    currency_format: str = "#,##0.00"
    # One row per transaction instead of one block per verification.
    flatten_transactions: bool = True


@dataclass
class Column:
    header: str
    value: Callable[[Any], Any]
    money: bool = False


def build_export_options(form: Mapping[str, Any]) -> ExportOptions:
    """Build options from string form fields; unknown keys and bad switches keep defaults."""
    options = ExportOptions()
    for opt in fields(ExportOptions):
        raw = form.get(opt.name)
        if not isinstance(raw, str):
            continue
        if isinstance(getattr(options, opt.name), bool):
            lowered = raw.strip().lower()
            if lowered in {"true", "false"}:
                setattr(options, opt.name, lowered == "true")
        elif raw.strip():
            setattr(options, opt.name, raw.strip())
    return options


def options_to_json(options: Optional[ExportOptions] = None) -> dict:
    values = asdict(options or ExportOptions())
    return {
        "sheets": {k: v for k, v in values.items() if k.startswith("include_") and k != "include_headers"},
        "columns": {k: v for k, v in values.items() if k.startswith("show_") or k.endswith("_column_name")},
        "formatting": {
            k: values[k]
            for k in ("include_headers", "auto_fit_columns", "format_currency", "currency_format", "flatten_transactions")
        },
    }


def account_type_label(account_type: Optional[str]) -> Optional[str]:
    if account_type is None:
        return None
    return ACCOUNT_TYPE_LABELS.get(account_type.upper(), account_type)


def year_label(year_index: int) -> str:
    if year_index == 0:
        return "Aktuellt år"
    if year_index == -1:
        return "Föregående år"
    return f"År {year_index}"


def date_text(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def dimensions_text(tx: Transaction) -> str:
    return ", ".join(f"{ref.dimension_number}:{ref.object_number}" for ref in tx.dimensions)


def verifications_by_date(document: Document) -> List[Verification]:
    # Stable sort, so verifications on the same date keep file order; undated go last.
    return sorted(document.verifications, key=lambda v: (v.verification_date is None, v.verification_date or date.min))


def write_header_row(ws: Worksheet, row: int, headers: List[str]) -> None:
    for col_idx, header in enumerate(headers, start=1):
        cell = ws.cell(row=row, column=col_idx, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = HEADER_ALIGNMENT


def adjust_column_widths(ws: Worksheet) -> None:
    for column_cells in ws.columns:
        max_length = max((len(str(cell.value)) for cell in column_cells if cell.value is not None), default=0)
        ws.column_dimensions[column_cells[0].column_letter].width = max(min(max_length + 2, 60), 10)


def write_table(
    ws: Worksheet,
    columns: List[Column],
    items: Iterable[Any],
    options: ExportOptions,
    start_row: int = 1,
) -> int:
    row = start_row
    if options.include_headers and columns:
        write_header_row(ws, row, [c.header for c in columns])
        row += 1
    for item in items:
        for col_idx, column in enumerate(columns, start=1):
            cell = ws.cell(row=row, column=col_idx, value=column.value(item))
            if column.money and options.format_currency:
                cell.number_format = options.currency_format
        row += 1
    return row


def create_company_sheet(wb: Workbook, document: Document, options: ExportOptions) -> None:
    ws = wb.active
    ws.title = "Företagsinfo"
    title = ws.cell(row=1, column=1, value="Företagsinformation")
    title.font = Font(bold=True, size=14)

    program = " ".join(part for part in (document.program_name, document.program_version) if part)
    info = [
        ("Företagsnamn:", document.company_name),
        ("Organisationsnummer:", document.company_number),
        ("Företags-id:", document.company_id),
        ("Valuta:", document.currency),
        ("Skatteår:", document.tax_year),
        ("SIE-version:", document.version),
        ("Format:", document.format),
        ("Program:", program or None),
        ("Genererad:", date_text(document.generated_date)),
    ]
    if document.financial_years:
        year = document.financial_years[0]
        info.append(("Räkenskapsår:", f"{date_text(year.start_date) or ''} - {date_text(year.end_date) or ''}"))
    if document.address_contact:
        info.extend(
            [
                ("Kontaktperson:", document.address_contact),
                ("Adress:", document.address_street),
                ("Postadress:", document.address_postal),
                ("Telefon:", document.address_phone),
            ]
        )

    for row, (label, value) in enumerate(info, start=3):
        ws.cell(row=row, column=1, value=label).font = Font(bold=True)
        ws.cell(row=row, column=2, value=value)

    if options.auto_fit_columns:
        adjust_column_widths(ws)


def create_accounts_sheet(wb: Workbook, document: Document, options: ExportOptions) -> None:
    ws = wb.create_sheet("Konton")
    candidates = [
        (options.show_account_number, Column(options.account_number_column_name, lambda a: a.number)),
        (options.show_account_name, Column(options.account_name_column_name, lambda a: a.name)),
        (options.show_account_type, Column(options.account_type_column_name, lambda a: account_type_label(a.account_type))),
        (options.show_sru_code, Column(options.sru_code_column_name, lambda a: a.sru_code)),
    ]
    columns = [column for shown, column in candidates if shown]
    write_table(ws, columns, sorted(document.accounts.values(), key=lambda a: a.number), options)
    if options.auto_fit_columns:
        adjust_column_widths(ws)


def create_transactions_sheet(wb: Workbook, document: Document, options: ExportOptions) -> None:
    ws = wb.create_sheet("Transaktioner")
    # Rows are (verification, transaction) pairs.
    candidates = [
        (options.show_verification_series, Column(options.verification_series_column_name, lambda r: r[0].series)),
        (options.show_verification_number, Column(options.verification_number_column_name, lambda r: r[0].number)),
        (options.show_verification_date, Column(options.verification_date_column_name, lambda r: date_text(r[0].verification_date))),
        (
            options.show_verification_description,
            Column(options.verification_description_column_name, lambda r: r[0].description),
        ),
        (options.show_transaction_account, Column(options.transaction_account_column_name, lambda r: r[1].account_number)),
        (
            options.show_transaction_amount,
            Column(options.transaction_amount_column_name, lambda r: r[1].amount, money=True),
        ),
        (
            options.show_transaction_date,
            Column(options.transaction_date_column_name, lambda r: date_text(r[1].transaction_date)),
        ),
        (
            options.show_transaction_description,
            Column(options.transaction_description_column_name, lambda r: r[1].description),
        ),
        (options.show_transaction_quantity, Column(options.transaction_quantity_column_name, lambda r: r[1].quantity)),
        (
            options.show_transaction_dimensions,
            Column(options.transaction_dimensions_column_name, lambda r: dimensions_text(r[1])),
        ),
    ]
    columns = [column for shown, column in candidates if shown]
    rows = [(ver, tx) for ver in verifications_by_date(document) for tx in ver.transactions]
    write_table(ws, columns, rows, options)
    if options.auto_fit_columns:
        adjust_column_widths(ws)


def create_verifications_sheet(wb: Workbook, document: Document, options: ExportOptions) -> None:
    ws = wb.create_sheet("Verifikationer")
    columns = [
        Column("Konto", lambda tx: tx.account_number),
        Column("Belopp", lambda tx: tx.amount, money=True),
        Column("Beskrivning", lambda tx: tx.description),
        Column("Dimensioner", dimensions_text),
    ]
    row = 1
    for ver in verifications_by_date(document):
        heading = ws.cell(row=row, column=1, value=" ".join(part for part in (ver.series, ver.number) if part))
        heading.font = Font(bold=True)
        ws.cell(row=row, column=2, value=date_text(ver.verification_date))
        ws.cell(row=row, column=3, value=ver.description)
        row += 1

        for col_idx, column in enumerate(columns, start=1):
            cell = ws.cell(row=row, column=col_idx, value=column.header)
            cell.font = Font(bold=True)
            cell.fill = GROUP_FILL
        row += 1

        for tx in ver.transactions:
            for col_idx, column in enumerate(columns, start=1):
                cell = ws.cell(row=row, column=col_idx, value=column.value(tx))
                if column.money and options.format_currency:
                    cell.number_format = options.currency_format
            row += 1
        row += 1

    if options.auto_fit_columns:
        adjust_column_widths(ws)


def create_balance_sheet(
    wb: Workbook, title: str, balances: List[Balance], options: ExportOptions
) -> None:
    ws = wb.create_sheet(title)
    candidates = [
        (options.show_balance_year, Column(options.balance_year_column_name, lambda b: year_label(b.year_index))),
        (options.show_balance_account, Column(options.balance_account_column_name, lambda b: b.account_number)),
        (options.show_balance_amount, Column(options.balance_amount_column_name, lambda b: b.amount, money=True)),
        (options.show_balance_quantity, Column(options.balance_quantity_column_name, lambda b: b.quantity)),
    ]
    columns = [column for shown, column in candidates if shown]
    ordered = sorted(balances, key=lambda b: (b.year_index, b.account_number))
    write_table(ws, columns, ordered, options)
    if options.auto_fit_columns:
        adjust_column_widths(ws)


def create_dimensions_sheet(wb: Workbook, document: Document, options: ExportOptions) -> None:
    ws = wb.create_sheet("Dimensioner")
    columns = [
        Column(options.dimension_number_column_name, lambda d: d.number),
        Column(options.dimension_name_column_name, lambda d: d.name),
    ]
    write_table(ws, columns, sorted(document.dimensions, key=lambda d: d.number), options)
    if options.auto_fit_columns:
        adjust_column_widths(ws)


def create_objects_sheet(wb: Workbook, document: Document, options: ExportOptions) -> None:
    ws = wb.create_sheet("Objekt")
    columns = [
        Column(options.dimension_number_column_name, lambda o: o.dimension_number),
        Column(options.object_number_column_name, lambda o: o.object_number),
        Column(options.object_name_column_name, lambda o: o.name),
    ]
    ordered = sorted(document.objects, key=lambda o: (o.dimension_number, o.object_number))
    write_table(ws, columns, ordered, options)
    if options.auto_fit_columns:
        adjust_column_widths(ws)


def build_workbook(document: Document, options: Optional[ExportOptions] = None) -> Workbook:
    options = options or ExportOptions()
    wb = Workbook()

    create_company_sheet(wb, document, options)
    if options.include_accounts and document.accounts:
        create_accounts_sheet(wb, document, options)
    if options.include_verifications and document.verifications:
        if options.flatten_transactions:
            create_transactions_sheet(wb, document, options)
        else:
            create_verifications_sheet(wb, document, options)
    if options.include_opening_balances and document.opening_balances:
        create_balance_sheet(wb, "Ingående saldon", document.opening_balances, options)
    if options.include_closing_balances and document.closing_balances:
        create_balance_sheet(wb, "Utgående saldon", document.closing_balances, options)
    if options.include_results and document.results:
        create_balance_sheet(wb, "Resultat", list(document.results), options)
    if options.include_dimensions and document.dimensions:
        create_dimensions_sheet(wb, document, options)
    if options.include_objects and document.objects:
        create_objects_sheet(wb, document, options)
    return wb


def export_workbook(document: Document, options: Optional[ExportOptions] = None) -> bytes:
    buffer = BytesIO()
    build_workbook(document, options).save(buffer)
    return buffer.getvalue()
