"""
Utility modules for the Session Broker Service.
"""
