"""
Reports
=======
Human-readable summaries of inspection, sync and validation output.
"""

from sqp_sync.reports.inspection import InspectionReportGenerator

__all__ = ["InspectionReportGenerator"]
