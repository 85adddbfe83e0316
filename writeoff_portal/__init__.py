"""
Service Write-Off Portal - unbilled sales order review and CBSI write-off actions
"""

__version__ = "1.0.0"
