"""
Customer Registry module.

Scope:
- Single-record registration, lookup and removal
- Batch search by national ID / phone, with spreadsheet export
- Birthday listings and dashboard counters
- Spreadsheet batch import (validation, in-file dedup, chunked insert)
"""
