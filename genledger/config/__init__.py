"""
Configuration for genledger.

YAML settings plus credentials from the environment.
"""
