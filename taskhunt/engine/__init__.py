"""
Task Hunt lifecycle engine
State machine, failure taxonomy and scheduler gateway; no web framework or database here.
"""
