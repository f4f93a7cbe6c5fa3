"""
Common utilities shared by the gatekeeper and the gateway
"""
