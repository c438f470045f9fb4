"""
Configuration for the LAN Device Manager.
"""
