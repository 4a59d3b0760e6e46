"""Durable background job processing for the LMS storefront."""

__version__ = "1.0.0"
