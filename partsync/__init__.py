"""
partsync: relay a database-filtered subset of writes from one MongoDB
cluster to another using change streams and a persisted resume token.
"""

__version__ = "0.1.0"
