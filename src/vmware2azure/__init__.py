"""VMware to Azure virtual machine migration through a WinRM conversion host."""

__version__ = "0.1.0"
