"""
Contract PDF package for the vehicle sale contract backend.

This module bundles reusable utilities for:
  - the contract form model and saved sellers, witnesses and jobs
  - mapping form data onto the PDF templates' form fields
  - filling, flattening and merging the templates
  - spelling the purchase price out in Hungarian words
"""

from .models import ContractForm, SavedJob, Seller, Witness
from .number_words import NumberToWordsConverter, NumberToWordsError
from .records import RecordNotFound, RecordStore, RecordStoreError, create_record_store
from .service import AssetUnavailableError, ContractPDFError, ContractPDFService, GeneratedPdf, PdfStorageError

__all__ = [
    "AssetUnavailableError",
    "ContractForm",
    "ContractPDFError",
    "ContractPDFService",
    "GeneratedPdf",
    "NumberToWordsConverter",
    "NumberToWordsError",
    "PdfStorageError",
    "RecordNotFound",
    "RecordStore",
    "RecordStoreError",
    "SavedJob",
    "Seller",
    "Witness",
    "create_record_store",
]
