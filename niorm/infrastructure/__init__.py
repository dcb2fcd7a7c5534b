"""
Infrastructure Layer - drivers, configuration, security and the CRUD engine.
"""
