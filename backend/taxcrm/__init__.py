"""
Tax Genius CRM backend.

Contacts, interactions, pipeline stage history and row-level access control
for a tax-preparation practice.
"""

__version__ = "1.0.0"
