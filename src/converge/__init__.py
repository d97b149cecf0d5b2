"""Convergence engine for declared ELBv2 infrastructure."""
