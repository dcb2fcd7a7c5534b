"""
Application Layer - contracts the infrastructure layer implements.
"""
