"""
CSV export and import of a user's transactions.

Columns: date,amount,type,description,category_id,account_id,is_shared

Import goes through LedgerService.create_transaction one row at a time, so
every imported row moves its account balance and a bad row only costs
itself. Transfers cannot be imported (the file carries no destination
account); such rows are reported as errors.
"""

import csv
import io

from .dates import format_date, parse_date
from .errors import FambudgetError, ValidationError
from .log import get_logger

logger = get_logger(__name__)

CSV_HEADER = ["date", "amount", "type", "description", "category_id", "account_id", "is_shared"]

TRUE_VALUES = ("1", "true", "t", "yes", "y")
FALSE_VALUES = ("0", "false", "f", "no", "n")


def _parse_bool(value, default=True):
    value = (value or "").strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    return default


class CsvService:

    def __init__(self, pool, transactions, ledger):
        self.pool = pool
        self.transactions = transactions
        self.ledger = ledger

    def export_csv(self, user_id, start_date=None, end_date=None):
        """Return the user's transactions (optionally within a date range) as CSV text."""
        if start_date:
            start_date = format_date(parse_date(start_date, "start_date"))
        if end_date:
            end_date = format_date(parse_date(end_date, "end_date"))

        with self.pool.connection() as conn:
            rows = self.transactions.find_for_export(conn, user_id, start_date, end_date)

        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for row in rows:
            writer.writerow([
                row["date"],
                row["amount"],
                row["type"],
                row["description"],
                row["category_id"] if row["category_id"] is not None else "",
                row["account_id"],
                "true" if row["is_shared"] else "false",
            ])
        return buf.getvalue()

    def import_csv(self, user_id, text):
        """
        Create one transaction per data row. Returns {"imported": n, "errors": [...]}
        with errors numbered by file line ("row 2: ..." is the first data row).
        """
        if isinstance(text, bytes):
            text = text.decode("utf-8-sig")
        reader = csv.reader(io.StringIO(text))

        try:
            next(reader)
        except StopIteration:
            raise ValidationError("CSV file is empty")
        except csv.Error as e:
            raise ValidationError(f"failed to read CSV header: {e}")

        imported = 0
        errors = []
        try:
            for line_no, record in enumerate(reader, start=2):
                if not record or not any(cell.strip() for cell in record):
                    continue
                if len(record) < 6:
                    errors.append(f"row {line_no}: insufficient columns")
                    continue
                try:
                    amount = int(record[1].strip())
                except ValueError:
                    errors.append(f"row {line_no}: invalid amount")
                    continue

                request = {
                    "date": record[0].strip(),
                    "amount": amount,
                    "type": record[2].strip(),
                    "description": record[3],
                    "category_id": record[4].strip() or None,
                    "account_id": record[5].strip(),
                    "is_shared": _parse_bool(record[6]) if len(record) > 6 else True,
                }
                try:
                    self.ledger.create_transaction(user_id, request)
                except FambudgetError as e:
                    errors.append(f"row {line_no}: {e.message}")
                    continue
                imported += 1
        except csv.Error as e:
            raise ValidationError(f"failed to parse CSV: {e}")

        logger.info("csv_imported", user_id=user_id, imported=imported, errors=len(errors))
        return {"imported": imported, "errors": errors}
