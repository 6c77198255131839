"""
Credential import - background import jobs, duplicate detection and CSV parsing.
"""

from reconciler.importing.csv_converter import CsvCredentialConverter
from reconciler.importing.importer import CredentialImporter
from reconciler.importing.match_detector import DefaultExistingCredentialMatchDetector

__all__ = ["CredentialImporter", "CsvCredentialConverter", "DefaultExistingCredentialMatchDetector"]
