"""Embedded DuckDB persistence for users, rooms, memberships, messages and receipts.

Services:
    - ChatStore: the single store implementing the identity, membership,
      message, receipt and user collaborator interfaces used by the chat core.
"""
