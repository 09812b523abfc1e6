"""
Connectors to MongoDB clusters.
"""
