"""sheet_importer: CSV / spreadsheet rows -> typed, persisted records.

Entry points:
- ``python -m sheet_importer.cli`` (see ``sheet_importer/cli/__main__.py``)
- ``sheet_importer.services.orchestrator.run_import`` / ``run_imports``
"""

__version__ = "0.1.0"
