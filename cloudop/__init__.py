"""Phase-driven reconciliation of cloud resources such as VPCs and subnets."""

__version__ = "0.1.0"