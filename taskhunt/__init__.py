"""
Task Hunt game lifecycle backend.
Game creation, membership, start/stop scheduling and deletion over a SQL document store.
"""
