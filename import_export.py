"""
import_export.py
----------------
Read transaction and subscription files into the store, and write monthly
data back out as CSV, JSON or a combined report.  CSV parsing goes through
``pandas.read_csv`` so quoted fields and embedded commas are handled by a
real parser.

Run as a script for the command line interface::

    python import_export.py import statement.csv
    python import_export.py export 2025 8 --format json
    python import_export.py import-subscriptions subs.json --duplicates replace
"""

from __future__ import annotations

import argparse
import json
import logging
import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import date
from io import StringIO
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from config import EXPORT_FOLDER, configure_logging
from exceptions import ImportFormatError
from financial_service import FinancialStore, get_financial_summary, new_id
from financial_types import MonthlyFinancialData, Transaction, TransactionCategory, to_jsonable
from storage import save_file
from subscriptions import PaymentCard, Subscription, SubscriptionStore, normalize_subscription

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ["Date", "Description", "Amount", "Category"]
EXPORT_HEADERS = ["Date", "Description", "Amount", "Category", "Type", "Source"]

# Patterns used to identify columns, first match wins.
DATE_PATTERNS = ["date"]
DESCRIPTION_PATTERNS = ["description", "name"]
AMOUNT_PATTERNS = ["amount"]
CATEGORY_PATTERNS = ["category", "type"]

# Keyword buckets for free-text categories, checked in order.
CATEGORY_KEYWORDS = [
    (("subscription", "service"), TransactionCategory.SUBSCRIPTIONS),
    (("transport", "gas", "uber"), TransactionCategory.TRANSPORTATION),
    (("utility", "electric", "water"), TransactionCategory.UTILITIES),
    (("debt", "credit", "loan"), TransactionCategory.DEBT_PAYMENTS),
]

SUBSCRIPTION_COLUMNS = {
    "name": ["name", "service", "subscription", "title", "service_name"],
    "cost": ["cost", "price", "amount", "monthly_cost", "fee"],
    "billing_cycle": ["billing_cycle", "cycle", "frequency", "billing", "period"],
    "next_payment": ["next_payment", "due_date", "renewal_date", "payment_date"],
    "category": ["category", "type", "service_type"],
    "subscription_type": ["subscription_type", "account_type"],
    "description": ["description", "notes", "memo"],
    "billing_url": ["billing_url", "url", "website", "link"],
    "status": ["status", "state", "active"],
}
CSV_BILLING_CYCLES = ("monthly", "quarterly", "yearly", "variable")
CSV_STATUSES = ("active", "cancelled", "watchlist")
DUPLICATE_STRATEGIES = ("skip", "replace", "keep-both")


@dataclass
class ImportResult:
    success: bool
    imported: int
    errors: List[str] = field(default_factory=list)


@dataclass
class ImportItem:
    import_id: str
    record: object  # Subscription or PaymentCard
    errors: List[str] = field(default_factory=list)


@dataclass
class Duplicate:
    type: str  # 'subscription', 'card'
    existing: object
    imported: object


@dataclass
class ImportPreview:
    subscriptions: List[ImportItem] = field(default_factory=list)
    cards: List[ImportItem] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    duplicates: List[Duplicate] = field(default_factory=list)


@dataclass
class AppliedImport:
    subscriptions: List[Subscription]
    cards: List[PaymentCard]
    success: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# --- Transaction CSV ---

def infer_column(df: pd.DataFrame, patterns: list[str]) -> Optional[str]:
    for pattern in patterns:
        for col in df.columns:
            if pattern in col.lower():
                return col
    return None


def parse_csv(content: str) -> pd.DataFrame:
    """Parse CSV text into a string-typed frame; needs a header and at least one row."""
    try:
        df = pd.read_csv(
            StringIO(content),
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            on_bad_lines="skip",
        )
    except pd.errors.EmptyDataError as exc:
        raise ImportFormatError("CSV must have at least a header row and one data row") from exc
    except pd.errors.ParserError as exc:
        raise ImportFormatError(f"Could not parse CSV: {exc}") from exc

    df.columns = [str(c).strip() for c in df.columns]
    # Short rows come back padded with NaN
    df = df.dropna().reset_index(drop=True)
    if df.empty:
        raise ImportFormatError("CSV must have at least a header row and one data row")
    return df.apply(lambda col: col.str.strip())


def clean_amounts(values: pd.Series) -> pd.Series:
    cleaned = values.astype(str).str.replace(r"[\$,]", "", regex=True)
    cleaned = cleaned.str.replace(r"\((.*?)\)", r"-\1", regex=True)
    return pd.to_numeric(cleaned, errors="coerce")


def validate_transaction_csv(df: pd.DataFrame) -> Tuple[bool, List[str]]:
    errors = []
    if df.empty:
        return False, ["No data rows found"]

    for required in REQUIRED_FIELDS:
        if infer_column(df, [required.lower()]) is None:
            errors.append(f"Missing required field: {required}")

    date_col = infer_column(df, DATE_PATTERNS)
    amount_col = infer_column(df, AMOUNT_PATTERNS)
    dates = pd.to_datetime(df[date_col], format="mixed", errors="coerce") if date_col else None
    amounts = clean_amounts(df[amount_col]) if amount_col else None

    # Row numbers are file lines: the header is row 1
    for index in range(len(df)):
        if date_col and df.at[index, date_col] and pd.isna(dates.iloc[index]):
            errors.append(f"Invalid date format in row {index + 2}: {df.at[index, date_col]}")
        if amount_col and df.at[index, amount_col] and pd.isna(amounts.iloc[index]):
            errors.append(f"Invalid amount format in row {index + 2}: {df.at[index, amount_col]}")

    return not errors, errors


def map_transaction_category(raw: str) -> TransactionCategory:
    label = (raw or "").strip().lower()
    try:
        return TransactionCategory(label)
    except ValueError:
        pass
    for keywords, category in CATEGORY_KEYWORDS:
        if any(k in label for k in keywords):
            return category
    return TransactionCategory.OTHER


def transactions_from_frame(df: pd.DataFrame) -> List[Transaction]:
    date_col = infer_column(df, DATE_PATTERNS)
    desc_col = infer_column(df, DESCRIPTION_PATTERNS)
    amount_col = infer_column(df, AMOUNT_PATTERNS)
    category_col = infer_column(df, CATEGORY_PATTERNS)

    dates = pd.to_datetime(df[date_col], format="mixed", errors="coerce")
    amounts = clean_amounts(df[amount_col]).abs()

    transactions = []
    for index, row in df.iterrows():
        if pd.isna(dates.iloc[index]) or pd.isna(amounts.iloc[index]):
            logger.warning("Skipping unreadable row %d", index + 2)
            continue
        transactions.append(
            Transaction(
                id=new_id("imported"),
                date=dates.iloc[index].date(),
                name=row[desc_col] or f"Transaction {index + 1}",
                amount=float(amounts.iloc[index]),
                category=map_transaction_category(row[category_col] if category_col else ""),
                source="imported",
            )
        )
    return transactions


def import_transactions_from_csv(content: str, store: FinancialStore) -> ImportResult:
    """Validate a transaction CSV and save its rows; nothing is saved when validation fails."""
    df = parse_csv(content)
    valid, errors = validate_transaction_csv(df)
    if not valid:
        logger.info("Rejected transaction CSV: %d problems", len(errors))
        return ImportResult(success=False, imported=0, errors=errors)

    transactions = transactions_from_frame(df)
    count = store.add_transactions(transactions)
    logger.info("Imported %d transactions from CSV", count)
    return ImportResult(success=True, imported=count)


# --- Export ---

def export_frame(
    data: MonthlyFinancialData,
    categories: Optional[Iterable[str]] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> pd.DataFrame:
    rows = [
        [t.date, t.name, t.amount, getattr(t.category, "value", t.category), "transaction", t.source or "manual"]
        for t in data.transactions
    ]
    rows += [[p.date, p.name, p.amount, "debt", "debt_payment", "manual"] for p in data.debt_payments]
    rows += [
        [s.date, s.service_name, s.amount, getattr(s.category, "value", s.category), "subscription", "manual"]
        for s in data.subscriptions
    ]
    df = pd.DataFrame(rows, columns=EXPORT_HEADERS)

    if categories is not None:
        df = df[df["Category"].isin(list(categories))]
    if start is not None:
        df = df[df["Date"] >= start]
    if end is not None:
        df = df[df["Date"] <= end]
    return df.reset_index(drop=True)


def export_to_csv(data: MonthlyFinancialData, **filters) -> str:
    return export_frame(data, **filters).to_csv(index=False)


def export_to_json(data: MonthlyFinancialData) -> str:
    return json.dumps(to_jsonable(data), indent=2)


def generate_financial_report(data: MonthlyFinancialData) -> Dict:
    return {
        "summary": get_financial_summary(data),
        "csv_data": export_to_csv(data),
        "json_data": export_to_json(data),
    }


def export_file_name(data: MonthlyFinancialData, fmt: str) -> str:
    return f"financial-data-{data.key}.{fmt}"


def save_export(content: str, file_name: str, folder: str = EXPORT_FOLDER) -> bool:
    return save_file(file_name, content, folder=folder)


# --- Subscription import ---

def normalize_field_name(name: str) -> str:
    name = re.sub(r"[^a-z0-9]", "_", str(name).lower())
    return re.sub(r"_+", "_", name).strip("_")


def find_column(headers: List[str], target: str, claimed: Iterable[str] = ()) -> Optional[str]:
    """Exact header match first, then a substring match either way round."""
    candidates = SUBSCRIPTION_COLUMNS[target]
    free = [h for h in headers if h not in set(claimed) and normalize_field_name(h)]
    for header in free:
        if normalize_field_name(header) in candidates:
            return header
    for header in free:
        normalized = normalize_field_name(header)
        if any(c in normalized or normalized in c for c in candidates):
            return header
    return None


def map_subscription_columns(headers: List[str]) -> Dict[str, Optional[str]]:
    """Each header feeds at most one field, claimed in SUBSCRIPTION_COLUMNS order."""
    mapping: Dict[str, Optional[str]] = {}
    for target in SUBSCRIPTION_COLUMNS:
        mapping[target] = find_column(headers, target, [c for c in mapping.values() if c])
    return mapping


def _find_duplicate(existing: Iterable, name: str, attr: str):
    wanted = name.lower()
    return next((e for e in existing if getattr(e, attr, "").lower() == wanted), None)


def _subscription_from_csv_row(row: Dict[str, str], index: int, today: date) -> Tuple[Subscription, List[str]]:
    errors = []
    name = (row.get("name") or "").strip()
    if not name:
        errors.append(f"Row {index + 1}: Missing or invalid name")

    cost = clean_amounts(pd.Series([row.get("cost") or "0"])).iloc[0]
    if pd.isna(cost) or cost < 0:
        errors.append(f"Row {index + 1}: Invalid cost value")
        cost = 0.0

    cycle = (row.get("billing_cycle") or "").lower()
    if cycle not in CSV_BILLING_CYCLES:
        cycle = "monthly"

    next_payment = today
    if row.get("next_payment"):
        parsed = pd.to_datetime(row["next_payment"], errors="coerce")
        if pd.isna(parsed):
            errors.append(f"Row {index + 1}: Invalid next payment date")
        else:
            next_payment = parsed.date()

    status = (row.get("status") or "").lower()
    if status not in CSV_STATUSES:
        status = "active"

    subscription = Subscription(
        id=f"sub-{uuid.uuid4().hex[:12]}",
        name=name,
        price=float(cost),
        frequency=cycle,
        next_payment=next_payment,
        category=row.get("category") or "Other",
        status=status,
        is_active=status != "cancelled",
        subscription_type="business" if row.get("subscription_type") == "business" else "personal",
        date_added=today,
        date_cancelled=today if status == "cancelled" else None,
        description=row.get("description") or "",
        billing_url=row.get("billing_url") or "",
    )
    return subscription, errors


def import_csv_subscriptions(
    content: str, existing: Iterable[Subscription] = (), today: Optional[date] = None
) -> ImportPreview:
    today = today or date.today()
    existing = list(existing)
    preview = ImportPreview()

    try:
        df = parse_csv(content)
    except ImportFormatError as exc:
        preview.errors.append(f"Failed to parse CSV: {exc}")
        return preview

    mapping = map_subscription_columns(list(df.columns))
    if mapping["name"] is None:
        preview.errors.append(
            'Required column "name" not found. Expected columns: name, service, subscription, or title'
        )
        return preview
    if mapping["cost"] is None:
        preview.warnings.append("Cost column not found. Will use $0 as default.")

    for index, raw in df.iterrows():
        if not any(raw.values):
            continue
        row = {target: raw[col] for target, col in mapping.items() if col is not None}
        subscription, errors = _subscription_from_csv_row(row, index, today)

        duplicate = _find_duplicate(existing, subscription.name, "name")
        if duplicate is not None:
            preview.duplicates.append(Duplicate("subscription", duplicate, subscription))

        preview.subscriptions.append(ImportItem(f"import_{index}", subscription, errors))
        preview.errors.extend(errors)

    if not preview.subscriptions:
        preview.errors.append("No valid subscriptions found in CSV file")
    return preview


def _card_from_raw(raw: dict, today: date) -> PaymentCard:
    return PaymentCard(
        id=f"card-{uuid.uuid4().hex[:12]}",
        nickname=raw["nickname"],
        last_four=str(raw.get("lastFour") or raw.get("last_four") or "0000"),
        type=raw.get("type") or "credit",
        issuer=raw.get("issuer") or "",
        color=raw.get("color") or "#3B82F6",
        is_default=bool(raw.get("isDefault") or raw.get("is_default") or False),
        date_added=pd.to_datetime(raw.get("dateAdded") or raw.get("date_added") or today).date(),
    )


def import_json_data(
    content: str,
    existing: Iterable[Subscription] = (),
    existing_cards: Iterable[PaymentCard] = (),
    today: Optional[date] = None,
) -> ImportPreview:
    today = today or date.today()
    existing, existing_cards = list(existing), list(existing_cards)
    preview = ImportPreview()

    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        preview.errors.append(f"Failed to parse JSON: {exc}")
        return preview
    if not isinstance(data, dict):
        preview.errors.append("Invalid JSON format: Root must be an object")
        return preview

    for index, raw in enumerate(data.get("subscriptions") or []):
        if not raw.get("name"):
            preview.errors.append(f"Subscription {index + 1}: Missing name field")
            continue
        try:
            subscription = normalize_subscription({**raw, "id": f"sub-{uuid.uuid4().hex[:12]}"}, today)
        except (TypeError, ValueError, KeyError) as exc:
            preview.errors.append(f"Subscription {index + 1}: {exc}")
            continue

        duplicate = _find_duplicate(existing, subscription.name, "name")
        if duplicate is not None:
            preview.duplicates.append(Duplicate("subscription", duplicate, subscription))
        preview.subscriptions.append(ImportItem(f"import_sub_{index}", subscription))

    for index, raw in enumerate(data.get("cards") or []):
        if not raw.get("nickname"):
            preview.errors.append(f"Card {index + 1}: Missing nickname field")
            continue
        try:
            card = _card_from_raw(raw, today)
        except (TypeError, ValueError) as exc:
            preview.errors.append(f"Card {index + 1}: {exc}")
            continue

        duplicate = _find_duplicate(existing_cards, card.nickname, "nickname")
        if duplicate is not None:
            preview.duplicates.append(Duplicate("card", duplicate, card))
        preview.cards.append(ImportItem(f"import_card_{index}", card))

    if "subscriptions" not in data and "cards" not in data:
        preview.warnings.append('No recognized data structure found. Expected "subscriptions" and/or "cards" arrays.')
    return preview


def process_import_file(
    path,
    existing: Iterable[Subscription] = (),
    existing_cards: Iterable[PaymentCard] = (),
    today: Optional[date] = None,
) -> ImportPreview:
    """Pick the CSV or JSON reader by file suffix, falling back to sniffing the content."""
    path = Path(path)
    content = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()

    if suffix == ".csv":
        return import_csv_subscriptions(content, existing, today)
    if suffix == ".json" or content.lstrip().startswith(("{", "[")):
        return import_json_data(content, existing, existing_cards, today)
    return import_csv_subscriptions(content, existing, today)


def apply_import(
    preview: ImportPreview,
    selected_subscriptions: Optional[Iterable[str]] = None,
    selected_cards: Optional[Iterable[str]] = None,
    duplicate_strategy: str = "skip",
) -> AppliedImport:
    """
    Turn a preview into the records to save.  Items with row errors are
    dropped; an empty selection means everything.  Duplicates are skipped,
    replace the existing record (keeping its id), or are kept alongside it.
    """
    if duplicate_strategy not in DUPLICATE_STRATEGIES:
        raise ValueError(f"duplicate_strategy must be one of {DUPLICATE_STRATEGIES}, got {duplicate_strategy!r}")

    selected_subscriptions = set(selected_subscriptions or ())
    selected_cards = set(selected_cards or ())
    matches = {id(d.imported): d.existing for d in preview.duplicates}

    def pick(items, selected):
        out = []
        for item in items:
            if selected and item.import_id not in selected:
                continue
            if item.errors:
                continue
            existing = matches.get(id(item.record))
            if existing is None or duplicate_strategy == "keep-both":
                out.append(item.record)
            elif duplicate_strategy == "replace":
                out.append(replace(item.record, id=existing.id))
        return out

    applied = AppliedImport(
        subscriptions=pick(preview.subscriptions, selected_subscriptions),
        cards=pick(preview.cards, selected_cards),
        errors=list(preview.errors),
    )
    if preview.duplicates:
        applied.warnings.append(
            f"{len(preview.duplicates)} duplicates detected and handled with strategy '{duplicate_strategy}'."
        )
    return applied


# --- Command line ---

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import and export SubTracker financial data")
    sub = parser.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Import a transaction CSV")
    imp.add_argument("path", type=str, help="CSV file with Date, Description, Amount and Category columns")

    exp = sub.add_parser("export", help="Export one month of data")
    exp.add_argument("year", type=int)
    exp.add_argument("month", type=int)
    exp.add_argument("--format", choices=["csv", "json"], default="csv")

    rep = sub.add_parser("report", help="Write CSV and JSON exports and print the month summary")
    rep.add_argument("year", type=int)
    rep.add_argument("month", type=int)

    subs = sub.add_parser("import-subscriptions", help="Import subscriptions and cards from CSV or JSON")
    subs.add_argument("path", type=str)
    subs.add_argument("--duplicates", choices=DUPLICATE_STRATEGIES, default="skip")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    from database import SessionLocal, init_db

    configure_logging()
    args = parse_args(argv)
    init_db()
    db = SessionLocal()
    try:
        store = FinancialStore(db)
        if args.command == "import":
            result = import_transactions_from_csv(Path(args.path).read_text(encoding="utf-8"), store)
            for error in result.errors:
                print(error)
            print(f"Imported {result.imported} transactions")
            return 0 if result.success else 1

        if args.command == "import-subscriptions":
            sub_store = SubscriptionStore(db)
            preview = process_import_file(args.path, sub_store.list_subscriptions(), sub_store.list_cards())
            applied = apply_import(preview, duplicate_strategy=args.duplicates)
            sub_store.save(applied.subscriptions, applied.cards)
            for message in applied.errors + applied.warnings:
                print(message)
            print(f"Imported {len(applied.subscriptions)} subscriptions and {len(applied.cards)} cards")
            return 0

        data = store.require_month(args.month, args.year)
        if args.command == "export":
            content = export_to_csv(data) if args.format == "csv" else export_to_json(data)
            name = export_file_name(data, args.format)
            save_export(content, name)
            print(f"Saved {name}")
            return 0

        report = generate_financial_report(data)
        save_export(report["csv_data"], export_file_name(data, "csv"))
        save_export(report["json_data"], export_file_name(data, "json"))
        print(json.dumps(to_jsonable(report["summary"]), indent=2))
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
