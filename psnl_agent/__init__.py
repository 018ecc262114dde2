"""PSNL - Proxmox Scheduled Network Limiter agent."""
__version__ = "0.1.0"
