"""Core (UI-agnostic) staff standards tracker logic.

This package contains:
- field configuration (text vs dropdown filter fields)
- filter criteria model and matching
- the filter engine and the drill-down navigator
- data loading (CSV/XLSX -> pandas -> records) and achievement persistence
- achievement metrics (JSON-serializable payloads)
- chart helpers (Altair -> Vega-Lite spec dict)
"""
