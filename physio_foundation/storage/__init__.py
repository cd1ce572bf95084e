"""Export helpers for analysis results."""

from .export import export_summary_json, export_table, summary_to_dict

__all__ = ["export_summary_json", "export_table", "summary_to_dict"]
