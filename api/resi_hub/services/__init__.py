# resi_hub/services/__init__.py
"""
Business logic services for Resi Hub.

Import from the submodules directly; the adapters depend on
``services.currency`` so this package stays import-free.
"""
