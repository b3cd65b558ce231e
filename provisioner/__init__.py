"""
Tenant database provisioner for a shared PostgreSQL cluster.
"""

__version__ = "1.0.0"
