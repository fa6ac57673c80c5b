"""
Procurement Workflow Platform
Blueprint registry.
"""
