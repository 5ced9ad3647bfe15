"""Validating HTTP proxy for FHIR resources, with field rules and bundle recipes."""

__version__ = "0.1.0"