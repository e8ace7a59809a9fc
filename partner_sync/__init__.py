"""
partner_sync - Partner and contact reconciliation between a PRM and a local store.

Keeps local partner, contact and lead tables in step with the PRM system of
record and revokes learning-platform access for records that drop out.
"""

__version__ = "0.1.0"
