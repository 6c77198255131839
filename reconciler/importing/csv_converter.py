"""
CSV Credential Converter - parses password-manager CSV exports into logins.

The first row is the header. Columns are matched case-insensitively:
name/title, url, username, password, note/notes. Rows without a password and
exact duplicates within the file are dropped, but still counted in
number_credentials_in_source so the importer reports them as skipped.
"""

import csv
import io
from dataclasses import dataclass
from typing import TypeAlias
from urllib.parse import urlsplit

from structlog import get_logger

from reconciler.models.domain import LoginCredentials

logger = get_logger(__name__)

_COLUMN_ALIASES = {
    "name": "domain_title",
    "title": "domain_title",
    "url": "domain",
    "username": "username",
    "password": "password",
    "note": "notes",
    "notes": "notes",
}


@dataclass(frozen=True)
class CsvImportSuccess:
    login_credentials_to_import: list[LoginCredentials]
    number_credentials_in_source: int


@dataclass(frozen=True)
class CsvImportError:
    message: str


CsvCredentialImportResult: TypeAlias = CsvImportSuccess | CsvImportError


def normalize_domain(url: str | None) -> str | None:
    """Reduce a URL to its host, keeping bare hosts as they are."""
    if not url:
        return None
    value = url.strip()
    host = urlsplit(value if "://" in value else f"//{value}").hostname
    return host or value


class CsvCredentialConverter:
    """Turns CSV text into an import list."""

    def read_csv(self, text: str) -> CsvCredentialImportResult:
        try:
            rows = list(csv.reader(io.StringIO(text.lstrip("\ufeff"))))
        except csv.Error as exc:
            logger.warning("csv_parse_failed", error=str(exc))
            return CsvImportError(f"Invalid CSV: {exc}")

        if not rows:
            return CsvImportError("CSV is empty")

        header = [column.strip().lower() for column in rows[0]]
        mapping = {
            index: _COLUMN_ALIASES[name]
            for index, name in enumerate(header)
            if name in _COLUMN_ALIASES
        }
        if "password" not in mapping.values():
            return CsvImportError("CSV has no password column")

        data_rows = [row for row in rows[1:] if any(cell.strip() for cell in row)]
        credentials: list[LoginCredentials] = []
        for row in data_rows:
            fields: dict[str, str | None] = {}
            for index, field_name in mapping.items():
                value = row[index].strip() if index < len(row) else ""
                fields[field_name] = value or None
            if not fields.get("password"):
                continue
            fields["domain"] = normalize_domain(fields.get("domain"))
            login = LoginCredentials(**fields)
            if login not in credentials:
                credentials.append(login)

        logger.info(
            "csv_parsed",
            rows=len(data_rows),
            importable=len(credentials),
        )
        return CsvImportSuccess(
            login_credentials_to_import=credentials,
            number_credentials_in_source=len(data_rows),
        )
