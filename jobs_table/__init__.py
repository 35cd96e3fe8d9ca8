"""
jobs_table package - grouped, lazily expanded jobs table

Expose the table controller and the row id codec.
"""
from .controller import JobsTableController, TableState
from .row_id import from_row_id, to_row_id

__all__ = ["JobsTableController", "TableState", "from_row_id", "to_row_id"]
