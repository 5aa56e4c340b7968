"""azrdp - short-lived Azure remote-desktop VMs behind chat commands

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Security by design (credentials never reach logs)
- Best-effort cleanup with every failure reported

azrdp creates Windows RDP VMs on Azure, keeps their issued credentials in a
local store, and tears VMs down together with their NICs, public IPs, NSGs
and OS disks.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
