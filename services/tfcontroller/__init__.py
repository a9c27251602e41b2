"""Kubernetes controller that applies Terraform resources through build and run pods."""

__version__ = "0.1.0"
