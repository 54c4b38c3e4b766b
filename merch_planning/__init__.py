"""
Merchandise Planning Approval Workflows

Sequential, role-gated approval chains for budget allocations, OTB plans
and SKU proposals, with SLA tracking and notification fan-out.
"""

__version__ = "1.0.0"
