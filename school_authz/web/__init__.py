"""
Web layer: role management API and application factory.
"""
