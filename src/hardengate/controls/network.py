"""Section 3: network parameters, firewall and the rsyslog service."""

from __future__ import annotations

from ..models.control import Control, HardeningParameters
from . import builders as b
from . import primitives as p


def controls(parameters: HardeningParameters) -> list[Control]:
    return [
        b.sysctl_control("3.1.1", "3.1", "Disable IP forwarding", {"net.ipv4.ip_forward": "0"}),
        b.sysctl_control(
            "3.1.2", "3.1", "Disable packet redirect sending",
            {
                "net.ipv4.conf.all.send_redirects": "0",
                "net.ipv4.conf.default.send_redirects": "0",
            },
        ),
        b.sysctl_control(
            "3.2.1", "3.2", "Ensure IPv6 router advertisements are not accepted",
            {
                "net.ipv6.conf.all.accept_ra": "0",
                "net.ipv6.conf.default.accept_ra": "0",
            },
        ),
        b.sysctl_control(
            "3.2.2", "3.2", "Ensure IPv6 redirects are not accepted",
            {
                "net.ipv6.conf.all.accept_redirects": "0",
                "net.ipv6.conf.default.accept_redirects": "0",
            },
        ),
        b.package_present("3.3.1", "3.3", "Ensure firewalld is installed", "firewalld"),
        b.package_absent("3.3.2", "3.3", "Ensure iptables-services is not installed", "iptables-services"),
        # firewalld drives nftables as its backend, so the package stays and the unit is masked
        b.service_not_enabled("3.3.3", "3.3", "Ensure nftables service is not enabled", "nftables"),
        b.service_enabled(
            "3.3.4", "3.3", "Ensure firewalld service is enabled and running", "firewalld",
            precondition=lambda target: p.package_installed(target, "firewalld"),
        ),
        b.package_present("3.4.1", "3.4", "Ensure rsyslog is installed", "rsyslog"),
        b.service_enabled("3.4.2", "3.4", "Ensure rsyslog service is enabled and running", "rsyslog"),
    ]
