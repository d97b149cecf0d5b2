"""Render targets: live cloud mutation and Terraform emission."""
