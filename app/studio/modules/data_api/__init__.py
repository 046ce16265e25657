"""
Data API module: generic CRUD over an allow-list of tables, for external tooling.
"""
