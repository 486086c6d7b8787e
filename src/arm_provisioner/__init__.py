"""Terraform-style provisioning engine for Azure Resource Manager templates."""

__version__ = "0.1.0"
