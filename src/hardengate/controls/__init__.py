"""Built-in CIS Amazon Linux 2023 control definitions."""

from typing import Optional

from ..models.control import Control, HardeningParameters, Section
from . import access, initial_setup, logging_auditing, network, services, system_maintenance

SECTIONS = [
    Section(key="1.1", title="Filesystem Configuration"),
    Section(key="1.3", title="Filesystem Integrity Checking"),
    Section(key="1.4", title="Secure Boot Settings"),
    Section(key="1.5", title="Additional Process Hardening"),
    Section(key="1.6", title="Mandatory Access Control"),
    Section(key="1.7", title="Command Line Warning Banners"),
    Section(key="1.8", title="GNOME Display Manager"),
    Section(key="2.1", title="inetd Services"),
    Section(key="2.2", title="Special Purpose Services"),
    Section(key="2.3", title="Service Clients"),
    Section(key="3.1", title="Network Parameters (Host Only)"),
    Section(key="3.2", title="Network Parameters (IPv6)"),
    Section(key="3.3", title="Firewall Configuration"),
    Section(key="3.4", title="Logging Services"),
    Section(key="4.1", title="Configure System Accounting (auditd)"),
    Section(key="4.2", title="Configure Logging"),
    Section(key="5.1", title="Configure cron"),
    Section(key="5.2", title="SSH Server Configuration"),
    Section(key="5.3", title="Configure PAM"),
    Section(key="5.4", title="User Accounts and Environment"),
    Section(key="5.5", title="User Environment Defaults"),
    Section(key="5.6", title="Root Login Restriction"),
    Section(key="6.1", title="System File Permissions"),
    Section(key="6.2", title="Local User and Group Settings"),
]

MODULES = [initial_setup, services, network, logging_auditing, access, system_maintenance]


def default_controls(parameters: Optional[HardeningParameters] = None) -> list[Control]:
    """Every built-in control, in benchmark order."""
    parameters = parameters or HardeningParameters()
    controls: list[Control] = []
    for module in MODULES:
        controls.extend(module.controls(parameters))
    return controls
