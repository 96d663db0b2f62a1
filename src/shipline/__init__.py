"""Shipline: staged build, push and deploy orchestration for container apps."""

__version__ = "0.3.0"
