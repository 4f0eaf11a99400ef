"""
Placement Kernel

Lifecycle core for labor-recruitment placements:
- Explicit application status state machine
- Component-aware cancellation refund engine
- Tenant-scoped cancellation, fee and lawyer-service policy
- Append-only lifecycle history
"""

__version__ = "0.1.0"
